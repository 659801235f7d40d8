from __future__ import annotations

import datetime
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Iterator, Literal, NewType, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

Currency = NewType("Currency", str)
Account = NewType("Account", str)
Flag = Literal["*", "!"]


class Amount(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: Decimal
    currency: Currency

    def __neg__(self) -> Amount:
        return Amount(value=-self.value, currency=self.currency)

    def __str__(self) -> str:
        return f"{self.value} {self.currency}"


class Cost(BaseModel):
    """Acquisition cost of a lot, expressed per unit."""

    amount: Amount | None = None
    date: datetime.date | None = None


class UnitPrice(BaseModel):
    kind: Literal["unit"] = "unit"
    amount: Amount


class TotalPrice(BaseModel):
    kind: Literal["total"] = "total"
    amount: Amount


PostingPrice = Annotated[Union[UnitPrice, TotalPrice], Field(discriminator="kind")]


class StringValue(BaseModel):
    kind: Literal["string"] = "string"
    value: str


class NumberValue(BaseModel):
    kind: Literal["number"] = "number"
    value: Decimal


class CurrencyValue(BaseModel):
    kind: Literal["currency"] = "currency"
    value: Currency


MetadataValue = Annotated[Union[StringValue, NumberValue, CurrencyValue], Field(discriminator="kind")]
Metadata = dict[str, MetadataValue]


class Posting(BaseModel):
    """A single account leg of a transaction.

    `amount` is None for an elided posting until the booker infers it; an
    inferred amount is marked with `autocomputed`.
    """

    account: Account
    amount: Amount | None = None
    cost: Cost | None = None
    price: PostingPrice | None = None
    flag: Flag | None = None
    metadata: Metadata = Field(default_factory=dict)
    autocomputed: bool = False


class Transaction(BaseModel):
    type: Literal["transaction"] = "transaction"
    flag: Flag | None = None
    payee: str | None = None
    narration: str | None = None
    tags: set[str] = Field(default_factory=set)
    links: set[str] = Field(default_factory=set)
    postings: list[Posting] = Field(default_factory=list)
    balanced: bool = False


class Balance(BaseModel):
    type: Literal["balance"] = "balance"
    account: Account
    amount: Amount


class Close(BaseModel):
    type: Literal["close"] = "close"
    account: Account


class Commodity(BaseModel):
    type: Literal["commodity"] = "commodity"
    currency: Currency


class Event(BaseModel):
    type: Literal["event"] = "event"
    name: str
    value: str


class Open(BaseModel):
    type: Literal["open"] = "open"
    account: Account
    currencies: set[Currency] = Field(default_factory=set)


class Pad(BaseModel):
    type: Literal["pad"] = "pad"
    account: Account
    source_account: Account


class Price(BaseModel):
    """Price of one unit of `currency`, quoted in `amount.currency`."""

    type: Literal["price"] = "price"
    currency: Currency
    amount: Amount


DirectiveContent = Annotated[
    Union[Balance, Close, Commodity, Event, Open, Pad, Price, Transaction],
    Field(discriminator="type"),
]


class Directive(BaseModel):
    date: datetime.date
    content: DirectiveContent
    metadata: Metadata = Field(default_factory=dict)

    @property
    def transaction(self) -> Transaction | None:
        if isinstance(self.content, Transaction):
            return self.content
        return None


class BeancountFile(BaseModel):
    includes: list[str] = Field(default_factory=list)
    options: dict[str, str] = Field(default_factory=dict)
    directives: list[Directive] = Field(default_factory=list)


class Ledger(BaseModel):
    """Flattened include tree; the first file is the root."""

    files: dict[Path, BeancountFile]

    @model_validator(mode="after")
    def _validate_files(self) -> Ledger:
        if not self.files:
            raise ValueError("Ledger must contain at least one file")
        return self

    @property
    def root(self) -> BeancountFile:
        return next(iter(self.files.values()))

    def directives(self) -> Iterator[tuple[Path, Directive]]:
        for path, file in self.files.items():
            for directive in file.directives:
                yield path, directive

    def transactions(self) -> Iterator[tuple[Path, Directive, Transaction]]:
        for path, directive in self.directives():
            transaction = directive.transaction
            if transaction is not None:
                yield path, directive, transaction

    @classmethod
    def single(cls, file: BeancountFile, path: Path | str = "main.json") -> Ledger:
        return cls(files={Path(path): file})
