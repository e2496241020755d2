"""Fixed-point helpers for on-chain integers carried as decimal strings."""

from decimal import ROUND_DOWN, Context, Decimal, InvalidOperation

# Enough digits for a uint256 scaled to 18 fractional places
_CONTEXT = Context(prec=120, rounding=ROUND_DOWN)
_EIGHTEEN_PLACES = Decimal("1e-18")


def to_decimal(value: str | int | Decimal | None) -> Decimal | None:
    """Parse a decimal string, returning None for missing or unparsable input."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def truncate_18(value: Decimal) -> str:
    """Render with exactly 18 fractional digits, truncating toward zero."""
    return str(value.quantize(_EIGHTEEN_PLACES, rounding=ROUND_DOWN, context=_CONTEXT))


def adjust_by_decimals(value: str | int, decimals: int) -> str:
    """Scale a raw integer down by 10**decimals.

    The result always has 18 fractional digits and is truncated rather than
    rounded, e.g. ``adjust_by_decimals("123456789", 8) == "1.234567890000000000"``.
    """
    scaled = Decimal(str(value)).scaleb(-decimals, _CONTEXT)
    return truncate_18(scaled)


def multiply_18(left: str, right: str) -> str:
    """Product of two decimal strings, truncated to 18 places."""
    return truncate_18(_CONTEXT.multiply(Decimal(left), Decimal(right)))


def format_units(value: str | int, decimals: int = 18) -> str:
    """Scale a raw integer and drop trailing zeros ("1000000000000000000" -> "1")."""
    scaled = Decimal(str(value)).scaleb(-decimals, _CONTEXT)
    text = format(scaled, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
