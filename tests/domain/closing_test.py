from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Sequence

import pytest

from domain.closing import (
    ClosingAccountAllocator,
    apply_closing,
    next_closing_id,
)
from domain.ledger import Account, Balance, Currency, Directive, Open
from tests.helpers.ledger_builders import ledger_of, open_account, posting, transaction, txn

CLEARING = "Assets:Closing"


def transfer(on: date, value: str, *, flag: str | None = None) -> Directive:
    return transaction(
        posting(CLEARING, value, "CHF", flag=flag),
        posting("Assets:Bank", str(-Decimal(value)), "CHF"),
        on=on,
    )


def clearing_accounts(directive: Directive) -> list[str]:
    return [p.account for p in txn(directive).postings if p.account.startswith(CLEARING)]


def test_allocator_formats_six_digit_ids() -> None:
    allocator = ClosingAccountAllocator(Account(CLEARING), 41)

    assert allocator.allocate() == "Assets:Closing:000041"
    assert allocator.allocate() == "Assets:Closing:000042"
    assert allocator.next_id == 43


def test_allocator_rejects_negative_id() -> None:
    with pytest.raises(ValueError):
        ClosingAccountAllocator(Account(CLEARING), -1)


def test_next_closing_id_ignores_unrelated_accounts() -> None:
    ledger = ledger_of(
        open_account("Assets:Closing:000007", "CHF"),
        open_account("Assets:Closing:000002", "CHF"),
        open_account("Assets:Closing:Other", "CHF"),
        open_account("Assets:ClosingX:000099", "CHF"),
    )

    assert next_closing_id(ledger, Account(CLEARING)) == 8
    assert next_closing_id(ledger_of(), Account(CLEARING)) == 0


def test_matches_unique_mutual_pair() -> None:
    withdrawal = transfer(date(2022, 1, 1), "-5", flag="!")
    deposit = transfer(date(2022, 1, 1), "5")
    ledger = ledger_of(withdrawal, deposit)

    report = apply_closing(ledger, 15)

    assert clearing_accounts(withdrawal) == ["Assets:Closing:000000"]
    assert clearing_accounts(deposit) == ["Assets:Closing:000000"]
    assert txn(withdrawal).postings[0].flag is None
    assert report.accounts == [(Account("Assets:Closing:000000"), Currency("CHF"))]
    assert report.skipped == []
    assert report.next_id == 1

    opened, asserted = ledger.root.directives[-2:]
    assert opened.date == date(2000, 1, 1)
    assert isinstance(opened.content, Open)
    assert opened.content.account == "Assets:Closing:000000"
    assert opened.content.currencies == {Currency("CHF")}
    assert asserted.date == date(2099, 1, 1)
    assert isinstance(asserted.content, Balance)
    assert asserted.content.account == "Assets:Closing:000000"
    assert asserted.content.amount.value == 0
    assert asserted.content.amount.currency == "CHF"


def test_second_pass_changes_nothing() -> None:
    ledger = ledger_of(transfer(date(2022, 1, 1), "-5"), transfer(date(2022, 1, 3), "5"))
    apply_closing(ledger, 15)
    snapshot = ledger.model_copy(deep=True)

    report = apply_closing(ledger, 15)

    assert report.matches == []
    assert report.skipped == []
    assert ledger == snapshot


def test_ids_continue_after_existing_sub_accounts() -> None:
    ledger = ledger_of(
        open_account("Assets:Closing:000004", "CHF"),
        transfer(date(2022, 1, 1), "-5"),
        transfer(date(2022, 1, 2), "5"),
    )

    report = apply_closing(ledger, 15)

    assert report.accounts == [(Account("Assets:Closing:000005"), Currency("CHF"))]


def test_pairs_outside_window_are_skipped() -> None:
    withdrawal = transfer(date(2022, 1, 1), "-5")
    deposit = transfer(date(2022, 2, 1), "5")
    ledger = ledger_of(withdrawal, deposit)

    report = apply_closing(ledger, 15)

    assert report.matches == []
    assert [error.directive for error in report.skipped] == [withdrawal, deposit]
    assert clearing_accounts(withdrawal) == [CLEARING]
    assert len(ledger.root.directives) == 2


def test_window_bound_is_inclusive() -> None:
    ledger = ledger_of(transfer(date(2022, 1, 1), "-5"), transfer(date(2022, 1, 16), "5"))

    report = apply_closing(ledger, 15)

    assert len(report.matches) == 1


def test_zero_window_requires_same_day() -> None:
    ledger = ledger_of(transfer(date(2022, 1, 1), "-5"), transfer(date(2022, 1, 2), "5"))

    report = apply_closing(ledger, 0)

    assert report.matches == []
    assert len(report.skipped) == 2


def test_amounts_must_offset_exactly() -> None:
    ledger = ledger_of(transfer(date(2022, 1, 1), "-5"), transfer(date(2022, 1, 1), "5.01"))

    report = apply_closing(ledger, 15)

    assert report.matches == []
    assert len(report.skipped) == 2


def test_non_mutual_match_is_skipped() -> None:
    first = transfer(date(2022, 1, 1), "-5")
    second = transfer(date(2022, 1, 10), "-5")
    deposit = transfer(date(2022, 1, 5), "5")
    ledger = ledger_of(first, second, deposit)

    report = apply_closing(ledger, 15)

    assert report.matches == []
    assert {id(error.directive) for error in report.skipped} == {id(first), id(second), id(deposit)}
    for directive in (first, second, deposit):
        assert clearing_accounts(directive) == [CLEARING]


def test_only_mutually_unique_pairs_match() -> None:
    early = transfer(date(2022, 1, 1), "-5")
    early_deposit = transfer(date(2022, 1, 2), "5")
    late = transfer(date(2022, 3, 1), "-5")
    late_deposit = transfer(date(2022, 3, 2), "5")
    ledger = ledger_of(late, early_deposit, early, late_deposit)

    report = apply_closing(ledger, 15)

    assert len(report.matches) == 2
    assert clearing_accounts(early) == clearing_accounts(early_deposit) == ["Assets:Closing:000000"]
    assert clearing_accounts(late) == clearing_accounts(late_deposit) == ["Assets:Closing:000001"]


def test_elided_clearing_posting_is_reported() -> None:
    unbooked = transaction(
        posting("Assets:Bank", "-5", "CHF"),
        posting(CLEARING),
        on=date(2022, 1, 1),
    )
    ledger = ledger_of(unbooked)

    report = apply_closing(ledger, 15)

    assert report.matches == []
    assert [error.directive for error in report.skipped] == [unbooked]
    assert "no amount" in str(report.skipped[0])


def test_decider_picks_among_ranked_candidates() -> None:
    withdrawal = transfer(date(2022, 1, 10), "-5")
    near = transfer(date(2022, 1, 12), "5")
    far = transfer(date(2022, 1, 1), "5")
    seen: list[list[Directive]] = []

    def decide(directive: Directive, candidates: Sequence[Directive]) -> int | None:
        if directive is not withdrawal:
            return None
        seen.append(list(candidates))
        return 1

    ledger = ledger_of(withdrawal, near, far)
    report = apply_closing(ledger, 15, decide=decide)

    assert seen == [[near, far]]
    assert len(report.matches) == 1
    assert clearing_accounts(withdrawal) == clearing_accounts(far) == ["Assets:Closing:000000"]
    assert clearing_accounts(near) == [CLEARING]
    assert [error.directive for error in report.skipped] == [near]


def test_decider_may_decline() -> None:
    ledger = ledger_of(transfer(date(2022, 1, 1), "-5"), transfer(date(2022, 3, 1), "5"))

    report = apply_closing(ledger, 15, decide=lambda directive, candidates: None)

    assert report.matches == []
    assert all("declined" in str(error) for error in report.skipped)


def test_decider_out_of_range_is_rejected() -> None:
    ledger = ledger_of(transfer(date(2022, 1, 1), "-5"), transfer(date(2022, 3, 1), "5"))

    with pytest.raises(ValueError):
        apply_closing(ledger, 15, decide=lambda directive, candidates: 3)


def test_decider_sees_at_most_max_candidates() -> None:
    withdrawal = transfer(date(2022, 1, 1), "-5")
    deposits = [transfer(date(2022, 1, day), "5") for day in (2, 3, 4, 5)]
    seen: list[int] = []

    def decide(directive: Directive, candidates: Sequence[Directive]) -> int | None:
        seen.append(len(candidates))
        return None

    apply_closing(ledger_of(withdrawal, *deposits), 15, decide=decide, max_candidates=2)

    assert seen and max(seen) == 2


def test_rejects_negative_window() -> None:
    with pytest.raises(ValueError):
        apply_closing(ledger_of(), -1)


def test_ledger_stays_consistent_when_decider_fails() -> None:
    withdrawal = transfer(date(2022, 1, 1), "-5")
    deposit = transfer(date(2022, 1, 1), "5")
    ledger = ledger_of(
        withdrawal,
        deposit,
        transfer(date(2022, 1, 2), "-7"),
        transfer(date(2022, 3, 1), "7"),
    )

    with pytest.raises(ValueError):
        apply_closing(ledger, 15, decide=lambda directive, candidates: 5)

    assert clearing_accounts(withdrawal) == clearing_accounts(deposit) == ["Assets:Closing:000000"]
    opened = [d.content for d in ledger.root.directives if isinstance(d.content, Open)]
    asserted = [d.content for d in ledger.root.directives if isinstance(d.content, Balance)]
    assert [o.account for o in opened] == ["Assets:Closing:000000"]
    assert [b.account for b in asserted] == ["Assets:Closing:000000"]
