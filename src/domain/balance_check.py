from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from .bag import CurrencyBag
from .ledger import Account, Amount, Balance, Directive, Ledger, Pad, Transaction

DEFAULT_TOLERANCE = Decimal("0.040")


@dataclass
class BalanceFailure:
    path: Path
    directive: Directive
    balance: Balance
    actual: Decimal
    fixed_later: bool = False

    @property
    def difference(self) -> Decimal:
        return self.actual - self.balance.amount.value


def _priority(directive: Directive) -> int:
    # Balance assertions check the state at the start of their day.
    return 0 if isinstance(directive.content, Balance) else 1


def check_balances(ledger: Ledger, *, tolerance: Decimal = DEFAULT_TOLERANCE) -> list[BalanceFailure]:
    """Replay postings per account and report balance assertions that do not hold.

    A failure is marked `fixed_later` when a later assertion on the same account
    passes again. A pad tops the account up to its next asserted amount,
    drawing from the pad source account. Postings without amount (unbooked) are ignored.
    """
    entries = sorted(ledger.directives(), key=lambda item: (item[1].date, _priority(item[1])))

    accounts: dict[Account, CurrencyBag] = defaultdict(CurrencyBag)
    padded: dict[Account, Account] = {}
    failures: list[BalanceFailure] = []

    for path, directive in entries:
        content = directive.content
        if isinstance(content, Balance):
            source = padded.pop(content.account, None)
            if source is not None:
                currency = content.amount.currency
                missing = content.amount.value - accounts[content.account].get(currency)
                padding = Amount(value=missing, currency=currency)
                accounts[content.account] += padding
                accounts[source] += -padding
                continue

            actual = accounts[content.account].get(content.amount.currency)
            if abs(actual - content.amount.value) > tolerance:
                failures.append(BalanceFailure(path=path, directive=directive, balance=content, actual=actual))
            else:
                for failure in failures:
                    if failure.balance.account == content.account:
                        failure.fixed_later = True
        elif isinstance(content, Pad):
            padded[content.account] = content.source_account
        elif isinstance(content, Transaction):
            for posting in content.postings:
                if posting.amount is not None:
                    accounts[posting.account] += posting.amount

    return failures
