from decimal import Decimal

import pytest

from domain.bag import CurrencyBag
from domain.ledger import Currency
from tests.helpers.ledger_builders import amount

CHF = Currency("CHF")
USD = Currency("USD")


def test_empty_bag_is_zero() -> None:
    assert CurrencyBag().is_zero()


def test_bag_with_value_is_not_zero() -> None:
    bag = CurrencyBag([amount(1, "CHF")])
    assert not bag.is_zero()


def test_bag_is_zero_when_all_entries_cancel() -> None:
    bag = CurrencyBag()
    bag += amount(1, "CHF")
    bag += amount(-1, "CHF")
    bag += amount(0, "USD")

    assert bag.is_zero()
    assert set(bag.commodities()) == {CHF, USD}

    bag.trim()
    assert dict(bag.commodities()) == {}


def test_add_amounts_accumulates_per_currency() -> None:
    bag = CurrencyBag()
    bag += amount(1, "CHF")
    bag += amount(2, "USD")
    bag += amount("0.5", "CHF")

    assert dict(bag.commodities()) == {CHF: Decimal("1.5"), USD: Decimal(2)}
    assert bag.get(Currency("EUR")) == 0


def test_merge_bags() -> None:
    bag1 = CurrencyBag([amount(1, "CHF")])
    bag2 = CurrencyBag([amount(2, "USD"), amount(3, "CHF")])

    bag1 += bag2

    assert dict(bag1.commodities()) == {CHF: Decimal(4), USD: Decimal(2)}
    # The merged-in bag is untouched.
    assert dict(bag2.commodities()) == {USD: Decimal(2), CHF: Decimal(3)}


def test_add_is_commutative_and_associative() -> None:
    a = CurrencyBag([amount(1, "CHF"), amount("-2.5", "USD")])
    b = CurrencyBag([amount(4, "EUR"), amount("2.5", "USD")])
    c = CurrencyBag([amount(-1, "CHF"), amount(7, "JPY")])

    left = (a + b) + c
    right = a + (b + c)
    swapped = a + c + b

    assert left == right == swapped
    assert dict(left.commodities()) == dict(right.commodities()) == dict(swapped.commodities())
    assert left.nonzero_currencies() == [Currency("EUR"), Currency("JPY")]


def test_plus_does_not_mutate_operands() -> None:
    a = CurrencyBag([amount(1, "CHF")])
    b = CurrencyBag([amount(2, "CHF")])

    total = a + b

    assert total.get(CHF) == 3
    assert a.get(CHF) == 1
    assert b.get(CHF) == 2


def test_commodities_view_is_read_only() -> None:
    bag = CurrencyBag([amount(1, "CHF")])
    view = bag.commodities()

    with pytest.raises(TypeError):
        view[CHF] = Decimal(5)  # type: ignore[index]
    assert bag.get(CHF) == 1


def test_reading_missing_currency_does_not_change_bag() -> None:
    bag = CurrencyBag([amount(1, "CHF")])

    with pytest.raises(KeyError):
        bag.commodities()[Currency("EUR")]
    assert bag.get(Currency("EUR")) == 0

    assert dict(bag.commodities()) == {CHF: Decimal(1)}
