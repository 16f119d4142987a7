from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from enum import Enum

from storefront.infra.clock import utcnow
from storefront.pricing.money import currency_exponent, to_decimal

MAX_EXCHANGE_RATE = Decimal("1000000")


class CurrencyError(ValueError):
    """Unknown currency or unusable exchange rate."""


class Rounding(Enum):
    NONE = "NONE"
    UP = "UP"
    DOWN = "DOWN"
    NEAREST = "NEAREST"


_DECIMAL_ROUNDING = {
    Rounding.UP: ROUND_CEILING,
    Rounding.DOWN: ROUND_FLOOR,
    Rounding.NEAREST: ROUND_HALF_UP,
}


@dataclass(frozen=True, slots=True)
class CurrencyConversion:
    from_currency: str
    to_currency: str
    from_amount: Decimal
    to_amount: Decimal
    unrounded_amount: Decimal
    exchange_rate: Decimal
    rounding: Rounding
    converted_at: datetime


def is_valid_currency_code(code: str) -> bool:
    return len(code) == 3 and code.isascii() and code.isalpha() and code.isupper()


class CurrencyConverter:
    """Convert between currencies through rates quoted against one base currency.

    ``rates`` maps a currency code to how many units of it one unit of the
    base currency buys. Cross rates go through the base.
    """

    def __init__(
        self,
        rates: Mapping[str, Decimal | float | str],
        base_currency: str = "USD",
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._base = base_currency.upper()
        self._rates: dict[str, Decimal] = {self._base: Decimal(1)}
        self._clock = clock
        for code, rate in rates.items():
            self.update_rate(code, rate)

    @property
    def base_currency(self) -> str:
        return self._base

    @property
    def currencies(self) -> list[str]:
        return sorted(self._rates)

    def update_rate(self, currency: str, rate: Decimal | float | str) -> None:
        code = currency.upper()
        if not is_valid_currency_code(code):
            raise CurrencyError(f"Invalid currency code: {currency!r}")
        value = to_decimal(rate)
        if not Decimal(0) < value < MAX_EXCHANGE_RATE:
            raise CurrencyError(f"Exchange rate for {code} out of range: {value}")
        if code == self._base and value != 1:
            raise CurrencyError(f"Base currency {code} must have rate 1")
        self._rates[code] = value

    def exchange_rate(self, from_currency: str, to_currency: str) -> Decimal:
        source, target = from_currency.upper(), to_currency.upper()
        if source == target:
            return Decimal(1)
        try:
            return self._rates[target] / self._rates[source]
        except KeyError as e:
            raise CurrencyError(f"No exchange rate for {e.args[0]}") from e

    def convert(
        self,
        amount: Decimal | float | str,
        from_currency: str,
        to_currency: str,
        rounding: Rounding = Rounding.NEAREST,
    ) -> CurrencyConversion:
        value = to_decimal(amount)
        if value < 0:
            raise CurrencyError(f"Cannot convert a negative amount: {value}")
        rate = self.exchange_rate(from_currency, to_currency)
        unrounded = value * rate
        converted = unrounded
        if rounding is not Rounding.NONE:
            step = Decimal(1).scaleb(-currency_exponent(to_currency))
            converted = unrounded.quantize(step, _DECIMAL_ROUNDING[rounding])
        return CurrencyConversion(
            from_currency=from_currency.upper(),
            to_currency=to_currency.upper(),
            from_amount=value,
            to_amount=converted,
            unrounded_amount=unrounded,
            exchange_rate=rate,
            rounding=rounding,
            converted_at=self._clock(),
        )
