from __future__ import annotations

from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, Mapping

from .ledger import Amount, Currency


class CurrencyBag:
    """Accumulates signed quantities keyed by currency."""

    def __init__(self, amounts: Iterable[Amount] = ()) -> None:
        self._currencies: dict[Currency, Decimal] = {}
        for amount in amounts:
            self.add(amount)

    def add(self, amount: Amount) -> None:
        self._accumulate(amount.currency, amount.value)

    def merge(self, other: CurrencyBag) -> None:
        for currency, value in other._currencies.items():
            self._accumulate(currency, value)

    def _accumulate(self, currency: Currency, value: Decimal) -> None:
        self._currencies[currency] = self._currencies.get(currency, Decimal(0)) + value

    def __iadd__(self, other: Amount | CurrencyBag) -> CurrencyBag:
        if isinstance(other, CurrencyBag):
            self.merge(other)
        else:
            self.add(other)
        return self

    def __add__(self, other: Amount | CurrencyBag) -> CurrencyBag:
        result = self.copy()
        result += other
        return result

    def copy(self) -> CurrencyBag:
        result = CurrencyBag()
        result._currencies.update(self._currencies)
        return result

    def is_zero(self) -> bool:
        return not any(value != 0 for value in self._currencies.values())

    def trim(self) -> None:
        for currency in [currency for currency, value in self._currencies.items() if value == 0]:
            del self._currencies[currency]

    def get(self, currency: Currency) -> Decimal:
        return self._currencies.get(currency, Decimal(0))

    def commodities(self) -> Mapping[Currency, Decimal]:
        return MappingProxyType(self._currencies)

    def nonzero_currencies(self) -> list[Currency]:
        return sorted(currency for currency, value in self._currencies.items() if value != 0)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CurrencyBag):
            return NotImplemented
        return _nonzero(self._currencies) == _nonzero(other._currencies)

    def __repr__(self) -> str:
        entries = ", ".join(f"{value} {currency}" for currency, value in sorted(self._currencies.items()))
        return f"CurrencyBag({entries})"


def _nonzero(currencies: Mapping[Currency, Decimal]) -> dict[Currency, Decimal]:
    return {currency: value for currency, value in currencies.items() if value != 0}
