from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from domain.ledger import (
    Amount,
    Balance,
    BeancountFile,
    Close,
    Commodity,
    CurrencyValue,
    Directive,
    Event,
    Ledger,
    Metadata,
    MetadataValue,
    NumberValue,
    Open,
    Pad,
    Posting,
    Price,
    TotalPrice,
    Transaction,
    UnitPrice,
)


def format_decimal(value: Decimal) -> str:
    quantized = value.normalize()
    # Avoid scientific notation for integers.
    if quantized == quantized.to_integral():
        return f"{quantized:.0f}"
    return format(quantized, "f")


def format_number(value: Decimal) -> str:
    """Plain notation keeping the number's own scale (10.50 stays 10.50)."""
    return format(value, "f")


def format_amount(amount: Amount) -> str:
    return f"{format_number(amount.value)} {amount.currency}"


def quote(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def render_ledger(ledger: Ledger) -> str:
    return "\n".join(f"; {path}\n{render_file(file)}" for path, file in ledger.files.items())


def render_file(file: BeancountFile) -> str:
    return "\n".join(render_directive(directive) for directive in file.directives)


def render_directive(directive: Directive) -> str:
    """Render one directive in beancount syntax, terminated by a newline.

    Amounts inferred by the booker are omitted so the output keeps the elided form.
    """
    lines = [f"{directive.date.isoformat()} {_render_header(directive)}"]
    lines.extend(_render_metadata(directive.metadata, indent="  "))
    transaction = directive.transaction
    if transaction is not None:
        for posting in transaction.postings:
            lines.append(render_posting(posting))
            lines.extend(_render_metadata(posting.metadata, indent="    "))
    return "\n".join(lines) + "\n"


def render_posting(posting: Posting) -> str:
    parts = ["  "]
    if posting.flag is not None:
        parts.append(f"{posting.flag} ")
    parts.append(posting.account)
    if posting.amount is not None and not posting.autocomputed:
        parts.append(f"  {format_amount(posting.amount)}")
    if posting.cost is not None and (posting.cost.amount is not None or posting.cost.date is not None):
        cost_parts = []
        if posting.cost.amount is not None:
            cost_parts.append(format_amount(posting.cost.amount))
        if posting.cost.date is not None:
            cost_parts.append(posting.cost.date.isoformat())
        parts.append(f" {{{', '.join(cost_parts)}}}")
    if isinstance(posting.price, UnitPrice):
        parts.append(f" @ {format_amount(posting.price.amount)}")
    elif isinstance(posting.price, TotalPrice):
        parts.append(f" @@ {format_amount(posting.price.amount)}")
    return "".join(parts)


def _render_header(directive: Directive) -> str:
    content = directive.content
    if isinstance(content, Balance):
        return f"balance {content.account} {format_amount(content.amount)}"
    if isinstance(content, Close):
        return f"close {content.account}"
    if isinstance(content, Commodity):
        return f"commodity {content.currency}"
    if isinstance(content, Event):
        return f"event {quote(content.name)} {quote(content.value)}"
    if isinstance(content, Open):
        currencies = ",".join(sorted(content.currencies))
        return f"open {content.account} {currencies}".rstrip()
    if isinstance(content, Pad):
        return f"pad {content.account} {content.source_account}"
    if isinstance(content, Price):
        return f"price {content.currency} {format_amount(content.amount)}"
    return _render_transaction_header(content)


def _render_transaction_header(transaction: Transaction) -> str:
    parts = [transaction.flag or "*"]
    if transaction.payee is not None:
        parts.append(quote(transaction.payee))
        parts.append(quote(transaction.narration or ""))
    elif transaction.narration is not None:
        parts.append(quote(transaction.narration))
    parts.extend(f"#{tag}" for tag in sorted(transaction.tags))
    parts.extend(f"^{link}" for link in sorted(transaction.links))
    return " ".join(parts)


def _render_metadata(metadata: Metadata, *, indent: str) -> Iterable[str]:
    for key in sorted(metadata):
        yield f"{indent}{key}: {_render_metadata_value(metadata[key])}"


def _render_metadata_value(value: MetadataValue) -> str:
    if isinstance(value, NumberValue):
        return format_number(value.value)
    if isinstance(value, CurrencyValue):
        return value.value
    return quote(value.value)
