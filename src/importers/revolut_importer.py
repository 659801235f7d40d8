"""Revolut statement importer.

How to get a statement: in the Revolut app open More > Statement, select Excel,
click "Get statement" and export it as CSV. Repeat for every currency account.
"""

from __future__ import annotations

import hashlib
import logging
from csv import DictReader
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from domain.ledger import Account, Amount, BeancountFile, Currency, Directive, Posting, Transaction

logger = logging.getLogger(__name__)

COMPLETED_STATE = "COMPLETED"


class RevolutStatementEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    started: str = Field(alias="Started Date")
    completed: str = Field(alias="Completed Date")
    description: str = Field(alias="Description")
    amount: Decimal = Field(alias="Amount")
    fee: Decimal = Field(alias="Fee")
    currency: str = Field(alias="Currency")
    state: str = Field(alias="State")

    @field_validator("amount", "fee", mode="before")
    @classmethod
    def _ensure_decimal(cls, value: str | Decimal) -> str | Decimal:
        if isinstance(value, str):
            value = value.strip()
            if value == "":
                return "0"
        return value

    @property
    def import_id(self) -> str:
        raw = f"{self.started}-{self.completed}-{self.description}-{self.amount}-{self.currency}"
        return f"id-revolut-{hashlib.md5(raw.encode('utf-8')).hexdigest()}"

    @property
    def start_date(self) -> date:
        # "2023-01-02 10:11:12" or just the date part
        return datetime.strptime(self.started.strip()[:10], "%Y-%m-%d").date()


class RevolutImporter:
    def __init__(self, source_path: str | Path, *, account_prefix: str, fee_account: str) -> None:
        self._source_path = Path(source_path)
        self._account_prefix = account_prefix.rstrip(":")
        self._fee_account = Account(fee_account)

    def load_file(self, *, skip_ids: set[str] | None = None) -> BeancountFile:
        skip = skip_ids or set()
        entries = self._read_entries()
        directives: list[Directive] = []
        pending = 0
        duplicates = 0
        for entry in entries:
            if entry.state != COMPLETED_STATE:
                pending += 1
                continue
            if entry.import_id in skip:
                duplicates += 1
                continue
            directives.append(self._build_directive(entry))

        logger.info(
            "Revolut import %s: %d rows, %d imported, %d not completed, %d already imported",
            self._source_path,
            len(entries),
            len(directives),
            pending,
            duplicates,
        )
        return BeancountFile(directives=directives)

    def _read_entries(self) -> list[RevolutStatementEntry]:
        with self._source_path.open(encoding="utf-8", newline="") as handle:
            reader = DictReader(handle)
            return [RevolutStatementEntry.model_validate(row) for row in reader]

    def _build_directive(self, entry: RevolutStatementEntry) -> Directive:
        currency = Currency(entry.currency.strip().upper())
        postings = [
            Posting(
                account=Account(f"{self._account_prefix}:{currency}"),
                amount=Amount(value=entry.amount - entry.fee, currency=currency),
            )
        ]
        if entry.fee != 0:
            postings.append(
                Posting(
                    account=self._fee_account,
                    amount=Amount(value=entry.fee, currency=currency),
                )
            )

        return Directive(
            date=entry.start_date,
            content=Transaction(
                narration=entry.description,
                links={entry.import_id},
                postings=postings,
            ),
        )
