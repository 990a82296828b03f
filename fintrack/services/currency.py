"""
Currency Conversion

The ledger only ever needs convert(amount, from, to) over a rate table it
treats as opaque and possibly stale. Fetching rates is somebody else's job;
update_rates() is how fresh ones arrive.

DESIGN DECISION: An unknown currency never fails the operation. The amount
is used as-is (identity conversion) and a warning is logged.
"""

from decimal import Decimal
from typing import Callable, Optional, Protocol

import structlog


logger = structlog.get_logger()


# Units of each currency per 1 USD
DEFAULT_RATES: dict[str, Decimal] = {
    "USD": Decimal("1.0"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "TRY": Decimal("32.5"),
}


class ConversionPort(Protocol):
    """Anything the ledger can ask to convert an amount."""

    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        ...


class CurrencyConverter:
    """
    Rate-table converter.

    Rates are expressed against a single base currency; converting goes
    through the base (amount / from_rate * to_rate).
    """

    def __init__(
        self,
        rates: Optional[dict[str, Decimal]] = None,
        base: str = "USD",
        on_fallback: Optional[Callable[[str, str], None]] = None,
    ):
        self._base = base.upper()
        self._rates = {
            code.upper(): Decimal(str(rate))
            for code, rate in (rates if rates is not None else DEFAULT_RATES).items()
        }
        self._rates.setdefault(self._base, Decimal("1"))
        self._on_fallback = on_fallback
        self._reported: set[tuple[str, str]] = set()

    @property
    def base(self) -> str:
        return self._base

    @property
    def rates(self) -> dict[str, Decimal]:
        """Copy of the current rate table."""
        return dict(self._rates)

    def update_rates(self, rates: dict[str, Decimal]) -> None:
        """Merge new rates into the table. Non-positive rates are ignored."""
        for code, rate in rates.items():
            value = Decimal(str(rate))
            if value <= 0:
                logger.warning("currency_rate_ignored", currency=code, rate=str(rate))
                continue
            self._rates[code.upper()] = value

    def get_rate(self, from_currency: str, to_currency: str) -> Decimal:
        """Units of to_currency per unit of from_currency (1 when unknown)."""
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return Decimal("1")

        from_rate = self._rates.get(from_currency)
        to_rate = self._rates.get(to_currency)
        if from_rate is None or to_rate is None:
            self._fallback(from_currency, to_currency)
            return Decimal("1")
        return to_rate / from_rate

    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        """
        Convert an amount between currencies.

        Identity when the currencies match, the amount is zero, or either
        currency is missing from the table.
        """
        if not amount or from_currency.upper() == to_currency.upper():
            return amount
        return amount * self.get_rate(from_currency, to_currency)

    def _fallback(self, from_currency: str, to_currency: str) -> None:
        logger.warning(
            "currency_conversion_fallback",
            from_currency=from_currency,
            to_currency=to_currency,
        )
        pair = (from_currency, to_currency)
        if self._on_fallback and pair not in self._reported:
            self._reported.add(pair)
            self._on_fallback(from_currency, to_currency)
