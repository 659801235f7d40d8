from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from .bag import CurrencyBag
from .ledger import Amount, Currency, Directive, Ledger, Posting, TotalPrice, Transaction, UnitPrice

logger = logging.getLogger(__name__)


class BookingError(Exception):
    def __init__(
        self,
        message: str,
        *,
        transaction: Transaction,
        residual: CurrencyBag | None = None,
        postings: list[Posting] | None = None,
    ) -> None:
        super().__init__(message)
        self.transaction = transaction
        self.residual = residual
        self.postings = postings or []


class StructuralError(BookingError):
    pass


class TooManyElidedPostings(StructuralError):
    pass


class ImbalanceError(BookingError):
    pass


class NothingToInfer(ImbalanceError):
    pass


class AmbiguousInference(ImbalanceError):
    pass


class TransactionDoesNotBalance(ImbalanceError):
    pass


def resolve_weight(posting: Posting) -> Amount | None:
    """Amount a posting contributes to its transaction's balance.

    Returns None for an elided posting. A cost basis takes precedence over a
    conversion price.
    """
    amount = posting.amount
    if amount is None:
        return None

    if posting.cost is not None and posting.cost.amount is not None:
        cost = posting.cost.amount
        return Amount(value=amount.value * cost.value, currency=cost.currency)

    price = posting.price
    if isinstance(price, UnitPrice):
        return Amount(value=amount.value * price.amount.value, currency=price.amount.currency)
    if isinstance(price, TotalPrice):
        return Amount(value=_sign(amount.value) * price.amount.value, currency=price.amount.currency)

    return amount


def book(transaction: Transaction) -> None:
    """Balance a transaction, inferring its single elided posting if any.

    Raises a StructuralError or an ImbalanceError when the transaction cannot be
    balanced. Only the elided posting and the `balanced` flag are mutated.
    """
    residual = CurrencyBag()
    elided: list[Posting] = []
    for posting in transaction.postings:
        weight = resolve_weight(posting)
        if weight is None:
            elided.append(posting)
            continue
        residual += weight

    if len(elided) > 1:
        raise TooManyElidedPostings(
            f"Transaction has {len(elided)} postings without amount, at most one is allowed: "
            f"{', '.join(posting.account for posting in elided)}",
            transaction=transaction,
            residual=residual,
            postings=elided,
        )

    unbalanced = residual.nonzero_currencies()

    if elided:
        posting = elided[0]
        if not unbalanced:
            transaction.balanced = False
            raise NothingToInfer(
                f"Nothing to infer for posting {posting.account}, other postings already balance",
                transaction=transaction,
                residual=residual,
                postings=elided,
            )
        if len(unbalanced) > 1:
            transaction.balanced = False
            raise AmbiguousInference(
                f"Cannot infer posting {posting.account}, residual spans several currencies: "
                f"{_describe(residual, unbalanced)}",
                transaction=transaction,
                residual=residual,
                postings=elided,
            )
        currency = unbalanced[0]
        posting.amount = Amount(value=-residual.get(currency), currency=currency)
        posting.autocomputed = True
    elif unbalanced:
        transaction.balanced = False
        raise TransactionDoesNotBalance(
            f"Transaction does not balance, residual {_describe(residual, unbalanced)}",
            transaction=transaction,
            residual=residual,
        )

    transaction.balanced = True


@dataclass
class BookingDiagnostic:
    path: Path
    directive: Directive
    error: BookingError


def book_ledger(ledger: Ledger) -> list[BookingDiagnostic]:
    """Book every transaction of the ledger, collecting failures instead of aborting."""
    diagnostics: list[BookingDiagnostic] = []
    booked = 0
    for path, directive, transaction in ledger.transactions():
        try:
            book(transaction)
        except BookingError as err:
            logger.debug("%s %s: %s", path, directive.date.isoformat(), err)
            diagnostics.append(BookingDiagnostic(path=path, directive=directive, error=err))
            continue
        booked += 1

    logger.info("Booked %d transactions, %d failed", booked, len(diagnostics))
    return diagnostics


def _sign(value: Decimal) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def _describe(residual: CurrencyBag, currencies: list[Currency]) -> str:
    return ", ".join(f"{residual.get(currency)} {currency}" for currency in currencies)
