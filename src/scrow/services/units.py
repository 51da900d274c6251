"""Conversion between human-readable amounts and raw token units."""

from decimal import Context, Decimal, InvalidOperation
from typing import Union

from scrow.errors import InvalidInput

# uint256 needs 78 digits
_WIDE = Context(prec=100)

MAX_UINT256 = 2**256 - 1


def parse_units(value: Union[str, int, Decimal], decimals: int) -> int:
    """Scale a human amount to the token's smallest unit.

    Args:
        value: Amount such as "10" or "0.25"
        decimals: Token decimals

    Returns:
        Raw integer amount

    Raises:
        InvalidInput: Not a number, negative, too large for uint256, or
            more fractional digits than the token supports
    """
    if isinstance(value, float):
        raise InvalidInput("Amounts must be given as strings or Decimals, not floats")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidInput(f"Invalid amount: {value!r}")

    if not amount.is_finite():
        raise InvalidInput(f"Invalid amount: {value!r}")
    if amount < 0:
        raise InvalidInput(f"Amount must not be negative: {value}")

    scaled = amount.scaleb(decimals, context=_WIDE)
    if scaled != scaled.to_integral_value():
        raise InvalidInput(f"Amount {value} has more than {decimals} decimal places")
    if scaled > MAX_UINT256:
        raise InvalidInput(f"Amount {value} is too large")
    return int(scaled)


def format_units(raw: int, decimals: int) -> str:
    """Render a raw amount with the token's decimals, trimming trailing zeros."""
    amount = Decimal(int(raw)).scaleb(-decimals, context=_WIDE)
    text = format(amount, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
