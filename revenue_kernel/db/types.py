"""
Module: revenue_kernel.db.types
Responsibility: Coercion and rounding helpers for monetary amounts.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere.  money_from() rejects float input outright.
    - round_money() is the ONLY sanctioned rounding function for amounts.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0")


def money_from(value: Decimal | int | str) -> Decimal:
    """
    Coerce a request value into a Decimal amount (unrounded).

    Raises:
        TypeError: If value is a float.
        ValueError: If value is not numeric or not finite.
    """
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be floats")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a numeric amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return result


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the currency minor unit.

    The ONLY sanctioned rounding function for monetary values.
    """
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)
