"""
Module: compliance_kernel.db.types
Responsibility: Annotated column type aliases and money helpers.  Centralizes
    precision, rounding, and currency validation so that every model,
    engine, and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    engines, services, and selectors.

Invariants enforced:
    - round_money() is the ONLY sanctioned rounding function for penalty,
      interest, and liability amounts.
    - No floats: all amounts use Decimal with explicit precision.
    - validate_currency() rejects codes outside the supported ISO 4217 set.

Failure modes:
    - InvalidCurrencyError on an unsupported currency code.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Annual interest rate in percent (e.g. 18.000000)
Rate = Annotated[Decimal, Numeric(12, 6)]

# ISO 4217 currency code
Currency = Annotated[str, String(3)]

ShortCode = Annotated[str, String(50)]
LongText = Annotated[str, String(4000)]

DEFAULT_ROUNDING = ROUND_HALF_UP

# Minor-unit exponents for currencies the engine is configured with.
CURRENCY_DECIMAL_PLACES: dict[str, int] = {
    "INR": 2,
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "SGD": 2,
    "AED": 2,
    "JPY": 0,
    "KWD": 3,
    "BHD": 3,
    "OMR": 3,
}


class InvalidCurrencyError(ValueError):
    """Raised when an unsupported ISO 4217 currency code is provided."""


def validate_currency(code: str) -> str:
    """Normalize and validate a currency code.

    Raises:
        InvalidCurrencyError: if the code is not supported.
    """
    normalized = (code or "").strip().upper()
    if normalized not in CURRENCY_DECIMAL_PLACES:
        raise InvalidCurrencyError(f"Unsupported currency code: {code!r}")
    return normalized


def decimal_places_for(currency: str) -> int:
    return CURRENCY_DECIMAL_PLACES[validate_currency(currency)]


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    This is the ONLY sanctioned rounding function for liability amounts.
    Intermediate calculations stay at full precision; round once at the end.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)


def to_decimal(value: object | None) -> Decimal | None:
    """Coerce a stored or configured number to Decimal, rejecting floats."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise TypeError(f"Float amounts are not allowed: {value!r}")
    return Decimal(str(value))


def as_aware_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
