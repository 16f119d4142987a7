"""Destination-based sales tax / VAT."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING

from storefront.pricing.models import Address, Cart, CartItem
from storefront.pricing.money import ZERO, quantize_money, to_decimal

if TYPE_CHECKING:
    from storefront.core.tables import TaxTable

DEFAULT_COUNTRY_RATES: dict[str, Decimal] = {
    "US": Decimal("0.08"),
    "CA": Decimal("0.13"),
    "GB": Decimal("0.20"),
    "DE": Decimal("0.19"),
}

DEFAULT_STATE_RATES: dict[str, dict[str, Decimal]] = {
    "US": {
        "CA": Decimal("0.10"),
        "NY": Decimal("0.08"),
        "TX": Decimal("0.0625"),
        "FL": Decimal("0.06"),
    },
}


def taxable_amount(items: Sequence[CartItem]) -> Decimal:
    """Sum of line totals for physical items; digital goods and services are exempt."""
    return sum((item.total_price for item in items if item.is_taxable), ZERO)


class TaxEngine:
    """Look up the destination rate and apply it to the taxable subtotal.

    A state override wins over its country rate; a country without an entry
    is untaxed. Shipping is never part of the taxable base.
    """

    def __init__(
        self,
        country_rates: Mapping[str, Decimal] | None = None,
        state_rates: Mapping[str, Mapping[str, Decimal]] | None = None,
    ) -> None:
        countries = DEFAULT_COUNTRY_RATES if country_rates is None else country_rates
        states = DEFAULT_STATE_RATES if state_rates is None else state_rates
        self._country_rates = {
            code.upper(): to_decimal(rate) for code, rate in countries.items()
        }
        self._state_rates = {
            country.upper(): {
                state.upper(): to_decimal(rate) for state, rate in rates.items()
            }
            for country, rates in states.items()
        }

    @classmethod
    def from_table(cls, table: TaxTable) -> TaxEngine:
        return cls(country_rates=table.countries, state_rates=table.states)

    @classmethod
    def from_yaml(cls, path: str | Path) -> TaxEngine:
        from storefront.core.tables import load_tax_table

        return cls.from_table(load_tax_table(path))

    def tax_rate(self, address: Address) -> Decimal:
        country_rate = self._country_rates.get(address.country, ZERO)
        if address.state:
            override = self._state_rates.get(address.country, {}).get(address.state)
            if override is not None:
                return override
        return country_rate

    def calculate_cart_tax(self, cart: Cart, address: Address) -> Decimal:
        return self.calculate_item_tax(cart.items, address, currency=cart.currency)

    def calculate_item_tax(
        self, items: Sequence[CartItem], address: Address, currency: str = "USD"
    ) -> Decimal:
        return quantize_money(taxable_amount(items) * self.tax_rate(address), currency)

    def set_tax_rate(
        self, country: str, rate: Decimal | float | str, state: str | None = None
    ) -> None:
        value = to_decimal(rate)
        if value < 0:
            raise ValueError(f"Tax rate must not be negative, got {value}")
        if state is None:
            self._country_rates[country.upper()] = value
        else:
            self._state_rates.setdefault(country.upper(), {})[state.upper()] = value

    def has_tax(self, address: Address) -> bool:
        return self.tax_rate(address) > 0
