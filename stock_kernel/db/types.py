"""
Module: stock_kernel.db.types
Responsibility: Decimal coercion and rounding helpers for quantity and cost
    values.  Centralizes precision and rounding so that every model and
    service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, services/,
    selectors/ and stock_engines.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the kernel.  Quantities and costs are Decimal
      stored as Numeric(38, 9).
    - round_money() is the ONLY sanctioned rounding function.  It is applied
      when a final cost total is produced, or at STORAGE_DECIMAL_PLACES when
      a unit cost is derived by division.  Per-draw totals are never rounded.
"""

from decimal import ROUND_HALF_UP, Decimal

CURRENCY_DECIMAL_PLACES = 2

# Scale of the Numeric(38, 9) quantity and cost columns
STORAGE_DECIMAL_PLACES = 9

DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """
    Coerce a caller-supplied quantity or cost to Decimal.

    Floats are rejected: they have already lost precision by the time
    they reach the kernel.  Infinity and NaN pass through; validators
    reject them with is_finite() before comparing.

    Raises:
        TypeError: If value is a float or bool.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(
            f"Quantities and costs must be Decimal, int or str, got {type(value).__name__}"
        )
    return Decimal(value)


def round_money(
    value: Decimal,
    decimal_places: int = CURRENCY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a cost total to currency precision.

    This is the ONLY sanctioned rounding function for cost values in the
    kernel.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "0"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def format_quantity(value: Decimal) -> str:
    """Fixed-point rendering without scientific notation or trailing zeros."""
    normalized = value.normalize()
    if normalized == normalized.to_integral():
        return format(normalized.quantize(Decimal(1)), "f")
    return format(normalized, "f")
