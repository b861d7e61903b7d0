"""Currency constants, static fallback rates and amount formatting."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Final, Mapping

SOURCE_CURRENCY: Final[str] = "EUR"

CURRENCY_SYMBOLS: Final[Mapping[str, str]] = {
    "EUR": "€",
    "USD": "$",
    "GBP": "£",
    "CAD": "C$",
    "AUD": "A$",
    "CHF": "CHF ",
    "JPY": "¥",
    "CNY": "¥",
}

SUPPORTED_CURRENCIES: Final[tuple[str, ...]] = tuple(CURRENCY_SYMBOLS)

# Rates relative to EUR, used only until an authoritative conversion arrives.
FALLBACK_RATES: Final[Mapping[str, float]] = {
    "EUR": 1.0,
    "USD": 1.1,
    "GBP": 0.85,
    "CAD": 1.5,
    "AUD": 1.65,
    "CHF": 0.95,
    "JPY": 165.0,
    "CNY": 7.8,
}

WHOLE_UNIT_CURRENCIES: Final[frozenset[str]] = frozenset({"JPY", "CNY"})


def normalize_currency_code(value: object) -> str | None:
    """Return an upper-cased supported currency code or ``None``."""

    if not isinstance(value, str):
        return None
    candidate = value.strip().upper()
    if candidate in CURRENCY_SYMBOLS:
        return candidate
    return None


def round_amount(amount: float, currency: str) -> float:
    """Round ``amount`` to the minor unit used by ``currency``."""

    exponent = Decimal("1") if currency in WHOLE_UNIT_CURRENCIES else Decimal("0.01")
    return float(Decimal(str(amount)).quantize(exponent, rounding=ROUND_HALF_UP))


def convert_with_fallback(amount: float, currency: str, *, source: str = SOURCE_CURRENCY) -> float:
    """Convert ``amount`` from ``source`` with the static fallback rates."""

    if currency == source:
        return amount
    source_rate = FALLBACK_RATES.get(source, 1.0)
    target_rate = FALLBACK_RATES.get(currency, 1.0)
    return round_amount(amount / source_rate * target_rate, currency)


def format_amount(amount: float, currency: str) -> str:
    """Return ``amount`` prefixed with the currency symbol.

    >>> format_amount(100, "USD")
    '$100.00'
    >>> format_amount(16500.4, "JPY")
    '¥16500'
    """

    symbol = CURRENCY_SYMBOLS.get(currency, f"{currency} ")
    if currency in WHOLE_UNIT_CURRENCIES:
        return f"{symbol}{round_amount(amount, currency):.0f}"
    return f"{symbol}{round_amount(amount, currency):.2f}"


__all__ = [
    "CURRENCY_SYMBOLS",
    "FALLBACK_RATES",
    "SOURCE_CURRENCY",
    "SUPPORTED_CURRENCIES",
    "convert_with_fallback",
    "format_amount",
    "normalize_currency_code",
    "round_amount",
]
