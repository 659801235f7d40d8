from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Protocol, Sequence

from .ledger import Account, Amount, Balance, Currency, Directive, Ledger, Open, Posting

logger = logging.getLogger(__name__)

DEFAULT_CLEARING_ACCOUNT = Account("Assets:Closing")
DEFAULT_OPEN_DATE = date(2000, 1, 1)
DEFAULT_BALANCE_DATE = date(2099, 1, 1)
DEFAULT_MAX_CANDIDATES = 3


class AmbiguousMatchError(Exception):
    """A clearing posting without a unique offsetting counterpart.

    Collected in the closing report; the directive is left unmodified.
    """

    def __init__(self, message: str, *, directive: Directive, candidates: Sequence[Directive] = ()) -> None:
        super().__init__(message)
        self.directive = directive
        self.candidates = list(candidates)


class ClosingDecider(Protocol):
    """Picks one of the ranked candidates for a directive, or None to decline."""

    def __call__(self, directive: Directive, candidates: Sequence[Directive]) -> int | None: ...


@dataclass
class ClosingMatch:
    account: Account
    currency: Currency
    first: Directive
    second: Directive


@dataclass
class ClosingReport:
    matches: list[ClosingMatch] = field(default_factory=list)
    skipped: list[AmbiguousMatchError] = field(default_factory=list)
    next_id: int = 0

    @property
    def accounts(self) -> list[tuple[Account, Currency]]:
        return [(match.account, match.currency) for match in self.matches]


@dataclass
class _Candidate:
    position: int
    directive: Directive
    posting: Posting
    amount: Amount

    def days_to(self, other: _Candidate) -> int:
        return abs((other.directive.date - self.directive.date).days)


class ClosingAccountAllocator:
    """Hands out sequential sub-accounts of the clearing account."""

    def __init__(self, clearing_account: Account, next_id: int) -> None:
        if next_id < 0:
            raise ValueError("next_id must be >= 0")
        self.clearing_account = clearing_account
        self.next_id = next_id

    def allocate(self) -> Account:
        account = Account(f"{self.clearing_account}:{self.next_id:06d}")
        self.next_id += 1
        return account


def next_closing_id(ledger: Ledger, clearing_account: Account) -> int:
    """One past the highest sub-account id already opened under the clearing account."""
    pattern = re.compile(rf"^{re.escape(clearing_account)}:(\d+)$")
    highest = -1
    for _, directive in ledger.directives():
        if not isinstance(directive.content, Open):
            continue
        found = pattern.match(directive.content.account)
        if found is not None:
            highest = max(highest, int(found.group(1)))
    return highest + 1


def apply_closing(
    ledger: Ledger,
    window_days: int,
    *,
    clearing_account: Account = DEFAULT_CLEARING_ACCOUNT,
    decide: ClosingDecider | None = None,
    open_date: date = DEFAULT_OPEN_DATE,
    balance_date: date = DEFAULT_BALANCE_DATE,
    max_candidates: int = DEFAULT_MAX_CANDIDATES,
) -> ClosingReport:
    """Pair offsetting postings to the clearing account and bind them to fresh sub-accounts.

    A pair is accepted only when each side is the other's unique offsetting
    candidate within `window_days`. Without a unique mutual match the optional
    `decide` callback may pick among the closest candidates; otherwise the
    directive is reported as skipped. Expects a booked ledger.
    """
    if window_days < 0:
        raise ValueError("window_days must be >= 0")
    if max_candidates <= 0:
        raise ValueError("max_candidates must be > 0")

    allocator = ClosingAccountAllocator(clearing_account, next_closing_id(ledger, clearing_account))
    report = ClosingReport()
    skipped: dict[int, AmbiguousMatchError] = {}

    candidates = _collect_candidates(ledger, clearing_account, skipped)
    index: dict[Amount, list[_Candidate]] = {}
    for candidate in candidates:
        index.setdefault(candidate.amount, []).append(candidate)

    matched: set[int] = set()

    def opposites(candidate: _Candidate) -> list[_Candidate]:
        return [
            other
            for other in index.get(-candidate.amount, [])
            if other.position != candidate.position and other.position not in matched
        ]

    def within_window(candidate: _Candidate, others: list[_Candidate]) -> list[_Candidate]:
        return [other for other in others if candidate.days_to(other) <= window_days]

    def bind(first: _Candidate, second: _Candidate) -> None:
        account = allocator.allocate()
        for side in (first, second):
            side.posting.account = account
            side.posting.flag = None
            matched.add(side.position)
            skipped.pop(side.position, None)
        match = ClosingMatch(
            account=account,
            currency=first.amount.currency,
            first=first.directive,
            second=second.directive,
        )
        report.matches.append(match)
        ledger.root.directives.extend(_closing_account_directives(match, open_date, balance_date))
        logger.info(
            "Matched closing pair %s/%s amount=%s -> %s (Δ %d days)",
            first.directive.date.isoformat(),
            second.directive.date.isoformat(),
            first.amount,
            account,
            first.days_to(second),
        )

    for candidate in candidates:
        if candidate.position in matched:
            continue

        offsetting = opposites(candidate)
        survivors = within_window(candidate, offsetting)
        if len(survivors) == 1:
            other = survivors[0]
            reverse = within_window(other, opposites(other))
            if len(reverse) == 1 and reverse[0] is candidate:
                bind(candidate, other)
                continue
            reason = (
                f"offsetting posting on {other.directive.date.isoformat()} has {len(reverse)} candidates "
                f"within {window_days} days"
            )
        else:
            reason = f"{len(survivors)} offsetting postings of {-candidate.amount} within {window_days} days"

        if decide is not None and offsetting:
            ranked = sorted(offsetting, key=candidate.days_to)[:max_candidates]
            choice = decide(candidate.directive, [other.directive for other in ranked])
            if choice is not None:
                if not 0 <= choice < len(ranked):
                    raise ValueError(f"Closing decision {choice} out of range 0..{len(ranked) - 1}")
                bind(candidate, ranked[choice])
                continue
            reason = f"{reason}; declined"

        skipped[candidate.position] = AmbiguousMatchError(
            f"Cannot close {candidate.amount} on {candidate.directive.date.isoformat()}: {reason}",
            directive=candidate.directive,
            candidates=[other.directive for other in offsetting],
        )

    report.skipped = [skipped[position] for position in sorted(skipped)]
    report.next_id = allocator.next_id
    logger.info(
        "Closing pass over %s: %d candidates, %d pairs matched, %d skipped",
        clearing_account,
        len(candidates),
        len(report.matches),
        len(report.skipped),
    )
    return report


def _collect_candidates(
    ledger: Ledger,
    clearing_account: Account,
    skipped: dict[int, AmbiguousMatchError],
) -> list[_Candidate]:
    found: list[tuple[Directive, Posting]] = []
    for _, directive, transaction in ledger.transactions():
        posting = next((p for p in transaction.postings if p.account == clearing_account), None)
        if posting is not None:
            found.append((directive, posting))
    found.sort(key=lambda item: item[0].date)

    candidates: list[_Candidate] = []
    for position, (directive, posting) in enumerate(found):
        if posting.amount is None:
            skipped[position] = AmbiguousMatchError(
                f"Cannot close posting on {directive.date.isoformat()}: clearing posting has no amount",
                directive=directive,
            )
            continue
        candidates.append(_Candidate(position=position, directive=directive, posting=posting, amount=posting.amount))
    return candidates


def _closing_account_directives(match: ClosingMatch, open_date: date, balance_date: date) -> list[Directive]:
    return [
        Directive(
            date=open_date,
            content=Open(account=match.account, currencies={match.currency}),
        ),
        Directive(
            date=balance_date,
            content=Balance(account=match.account, amount=Amount(value=Decimal(0), currency=match.currency)),
        ),
    ]
