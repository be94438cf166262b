"""
Amount Handling Module

Parses and rounds monetary amounts with Decimal precision. NEVER uses float
for stored values; floats coming from JSON are converted through their
string form so 0.1 stays 0.1.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Any, Union
import re

from .errors import InvalidAmount

# Set global decimal context for financial precision
getcontext().prec = 28

DEFAULT_PRECISION = 2  # Wallet amounts are kept in cents

# Upper bound for any single amount and for any balance. Sums of two values
# below it stay far inside the 28-digit context, so balance arithmetic is exact.
MAX_AMOUNT = Decimal('10') ** 15

_AMOUNT_PATTERN = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)$')

AmountLike = Union[Decimal, int, float, str]


def quantize_amount(value: Decimal, precision: int = DEFAULT_PRECISION) -> Decimal:
    """
    Round to ``precision`` decimal places, half up

    Raises:
        InvalidAmount: If the value has too many digits to round exactly
    """
    try:
        return value.quantize(Decimal('0.1') ** precision, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmount(
            f"Amount {value} cannot be represented with {precision} decimal places",
            details={"amount": str(value)}
        )


def check_limit(value: Decimal, original: Any = None) -> Decimal:
    """
    Reject values above MAX_AMOUNT

    Raises:
        InvalidAmount: If ``abs(value)`` exceeds MAX_AMOUNT
    """
    if abs(value) > MAX_AMOUNT:
        shown = value if original is None else original
        raise InvalidAmount(
            f"Amount {shown} exceeds the maximum of {MAX_AMOUNT}",
            details={"amount": str(shown), "maximum": str(MAX_AMOUNT)}
        )
    return value


def decimal_from_value(value: Any) -> Decimal:
    """
    Convert a caller-supplied amount to Decimal

    Accepts Decimal, int, float and numeric strings (surrounding whitespace,
    a leading ``$`` and thousands commas are tolerated).

    Raises:
        InvalidAmount: If the value is not a finite number
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(f"Amount must be a number, got {value!r}")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        clean_value = value.strip().lstrip('$').replace(',', '')
        if not _AMOUNT_PATTERN.match(clean_value):
            raise InvalidAmount(f"Cannot convert {value!r} to an amount")
        try:
            result = Decimal(clean_value)
        except InvalidOperation:
            raise InvalidAmount(f"Cannot convert {value!r} to an amount")
    else:
        raise InvalidAmount(f"Amount must be a number, got {type(value).__name__}")

    if not result.is_finite():
        raise InvalidAmount(f"Amount must be finite, got {value!r}")

    return result


def parse_amount(value: AmountLike, precision: int = DEFAULT_PRECISION) -> Decimal:
    """
    Parse and validate a movement amount

    Args:
        value: Amount as supplied by the caller
        precision: Decimal places to round to

    Returns:
        Positive Decimal rounded to ``precision``

    Raises:
        InvalidAmount: If the amount is not numeric or rounds to <= 0
    """
    amount = quantize_amount(check_limit(decimal_from_value(value), value), precision)
    if amount <= Decimal('0'):
        raise InvalidAmount(
            f"Amount must be positive, got {value}",
            details={"amount": str(value)}
        )
    return amount


def parse_balance(value: AmountLike, precision: int = DEFAULT_PRECISION) -> Decimal:
    """Like parse_amount but allows zero (opening balances)"""
    amount = quantize_amount(check_limit(decimal_from_value(value), value), precision)
    if amount < Decimal('0'):
        raise InvalidAmount(
            f"Balance cannot be negative, got {value}",
            details={"amount": str(value)}
        )
    return amount


def format_amount(value: Decimal, precision: int = DEFAULT_PRECISION) -> str:
    """Format for display"""
    return f"{value:,.{precision}f}"
