"""Fixed-precision money helpers shared by all monetary arithmetic."""
from decimal import Decimal, ROUND_HALF_UP

MONEY_PLACES = Decimal('0.01')
ZERO = Decimal('0.00')


def to_decimal(value) -> Decimal:
    """Convert ints, floats and strings to Decimal without binary noise."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    # str() gives the shortest repr of a float, so 1.005 stays 1.005
    return Decimal(str(value))


def round_money(value) -> Decimal:
    """
    Round to 2 fraction digits, half away from zero.

    round_money(round_money(x)) == round_money(x) for every finite x.
    """
    return to_decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def clamp(value, min_value, max_value):
    """
    Bound value to [min_value, max_value].

    Inverted bounds (min_value > max_value) always yield min_value.
    """
    if value < min_value or min_value > max_value:
        return min_value
    if value > max_value:
        return max_value
    return value
