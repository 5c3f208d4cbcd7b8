from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value) -> Decimal:
    """Coerce ints, strings, floats and Decimals to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        raise ValueError("amount is required")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"invalid amount: {value!r}")


def quantize_cent(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
