"""
Module: fabshop_kernel.db.types
Responsibility: Annotated column types and the sanctioned rounding / parsing
    helpers for money and hours.  Every model and service uses these so that
    precision is identical system-wide.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and modules.  MUST NOT import from those layers.

Invariants enforced:
    - No floats.  Money and hours are Decimal; float inputs are converted
      through str() so binary artifacts never leak in.
    - Money is rounded to MONEY_DECIMAL_PLACES (2) with ROUND_HALF_UP.
    - Hours are rounded to HOURS_DECIMAL_PLACES (4) with ROUND_HALF_UP.

Failure modes:
    - ValidationError when a value cannot be parsed as a finite Decimal.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from sqlalchemy import Numeric, String, Text

from fabshop_kernel.exceptions import ValidationError

# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Worked / estimated hours
Hours = Annotated[Decimal, Numeric(38, 9)]

# Item quantity (fractional quantities allowed, e.g. 2.5 m of tube)
Quantity = Annotated[Decimal, Numeric(38, 9)]

# Short identifier strings (numbers, codes, statuses)
ShortCode = Annotated[str, String(50)]

# Display names
Name = Annotated[str, String(255)]

# Free text
LongText = Annotated[str, Text()]


MONEY_DECIMAL_PLACES = 2
HOURS_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP

SECONDS_PER_HOUR = Decimal(3600)


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """
    Parse a caller-supplied number into a finite Decimal.

    Raises:
        ValidationError: If the value is None, not numeric, NaN or infinite.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(field, f"expected a number, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(field, f"not a number: {value!r}") from exc
    if not result.is_finite():
        raise ValidationError(field, f"must be finite, got {value!r}")
    return result


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    The only sanctioned rounding function for money.  Item totals, order
    sale values and invoice totals all go through it.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def round_hours(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """Round an hours figure to HOURS_DECIMAL_PLACES."""
    return round_money(value, HOURS_DECIMAL_PLACES, rounding)


def hours_between(start, end) -> Decimal:
    """Hours between two aware datetimes, rounded.  Caller checks end >= start."""
    delta = end - start
    seconds = Decimal(delta.days * 86400 + delta.seconds) + (
        Decimal(delta.microseconds) / Decimal(1_000_000)
    )
    return round_hours(seconds / SECONDS_PER_HOUR)
