from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, Inexact, localcontext
from typing import Any

from pydantic import BaseModel

from .ledger import Amount, Balance, Currency, Directive, Ledger, Posting, Price, TotalPrice, Transaction, UnitPrice

logger = logging.getLogger(__name__)

# (record, field name, new value)
_Update = tuple[BaseModel, str, Any]


class SplitError(Exception):
    def __init__(
        self,
        message: str,
        *,
        commodity: Currency,
        ratio: Decimal,
        directive: Directive | None = None,
    ) -> None:
        super().__init__(message)
        self.commodity = commodity
        self.ratio = ratio
        self.directive = directive


@dataclass
class SplitReport:
    balances: int = 0
    prices: int = 0
    postings: int = 0


def apply_split(ledger: Ledger, commodity: Currency, ratio: Decimal) -> SplitReport:
    """Restate every reference to `commodity` after an R:1 split.

    Quantities are multiplied by the ratio while per-unit costs and prices are
    divided by it, so posting weights and therefore balances are preserved.
    Total prices are left as they are.

    Every new value is computed before the ledger is touched. A value that
    cannot be represented exactly raises SplitError and leaves the ledger as it was.
    """
    if not ratio.is_finite() or ratio <= 0:
        raise SplitError(f"Split ratio must be a positive number, got {ratio}", commodity=commodity, ratio=ratio)

    report = SplitReport()
    updates: list[_Update] = []
    with localcontext() as ctx:
        ctx.traps[Inexact] = True
        for _, directive in ledger.directives():
            try:
                updates.extend(_directive_updates(directive, commodity, ratio, report))
            except Inexact as exc:
                raise SplitError(
                    f"Splitting {commodity} by {ratio} is not exact for {directive.content.type} "
                    f"on {directive.date.isoformat()}",
                    commodity=commodity,
                    ratio=ratio,
                    directive=directive,
                ) from exc

    for record, name, value in updates:
        setattr(record, name, value)

    logger.info(
        "Split %s by %s: %d balances, %d prices, %d postings rescaled",
        commodity,
        ratio,
        report.balances,
        report.prices,
        report.postings,
    )
    return report


def _directive_updates(
    directive: Directive, commodity: Currency, ratio: Decimal, report: SplitReport
) -> list[_Update]:
    content = directive.content
    if isinstance(content, Balance):
        if content.amount.currency == commodity:
            report.balances += 1
            return [(content, "amount", _scaled(content.amount, ratio))]
    elif isinstance(content, Price):
        if content.currency == commodity:
            report.prices += 1
            return [(content, "amount", _divided(content.amount, ratio))]
    elif isinstance(content, Transaction):
        updates: list[_Update] = []
        for posting in content.postings:
            posting_updates = split_posting(posting, commodity, ratio)
            if posting_updates:
                report.postings += 1
                updates.extend(posting_updates)
        return updates
    return []


def split_posting(posting: Posting, commodity: Currency, ratio: Decimal) -> list[_Update]:
    """Updates restating one posting; empty when it does not hold `commodity`."""
    amount = posting.amount
    if amount is None or amount.currency != commodity:
        return []

    updates: list[_Update] = [(posting, "amount", _scaled(amount, ratio))]
    if posting.cost is not None and posting.cost.amount is not None:
        updates.append((posting.cost, "amount", _divided(posting.cost.amount, ratio)))
    if isinstance(posting.price, UnitPrice):
        updates.append((posting, "price", UnitPrice(amount=_divided(posting.price.amount, ratio))))
    elif isinstance(posting.price, TotalPrice):
        logger.debug("Total price %s on %s left as is", posting.price.amount, posting.account)
    return updates


def _scaled(amount: Amount, factor: Decimal) -> Amount:
    return Amount(value=amount.value * factor, currency=amount.currency)


def _divided(amount: Amount, divisor: Decimal) -> Amount:
    return Amount(value=amount.value / divisor, currency=amount.currency)
