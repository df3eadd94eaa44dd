"""
Token quantity conversion between whole units and base units
"""

from decimal import Decimal, InvalidOperation

DECIMALS = 18
BASE_UNITS_PER_TOKEN = 10 ** DECIMALS

# Largest supply whose base-unit value still fits a uint256
MAX_WHOLE_UNITS = (2 ** 256 - 1) // BASE_UNITS_PER_TOKEN


def to_minimal_units(whole_units: int) -> int:
    """Convert whole tokens to base units (whole * 10**18) with integer math only"""
    if isinstance(whole_units, bool) or not isinstance(whole_units, int):
        raise TypeError(f"whole_units must be an int, got {type(whole_units).__name__}")
    if whole_units < 0:
        raise ValueError(f"whole_units cannot be negative: {whole_units}")
    return whole_units * BASE_UNITS_PER_TOKEN


def parse_whole_units(value) -> int:
    """Parse a request supply (JSON number or numeric string) into an int.

    Floats and decimal strings are accepted only when they hold an exact
    whole number; anything else raises ValueError.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError("initialSupply must be a whole number")

    if isinstance(value, int):
        amount = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"initialSupply must be a whole number, got {value}")
        # str() keeps the float's shortest repr instead of its binary expansion
        amount = int(Decimal(str(value)))
    elif isinstance(value, str):
        text = value.strip().replace("_", "")
        if not text:
            raise ValueError("initialSupply cannot be empty")
        if text.isdigit():
            amount = int(text)
        else:
            try:
                parsed = Decimal(text)
            except InvalidOperation:
                raise ValueError(f"initialSupply is not a number: {value!r}")
            if not parsed.is_finite() or parsed.adjusted() > 80:
                raise ValueError(f"initialSupply is out of range: {value!r}")
            if parsed != parsed.to_integral_value():
                raise ValueError(f"initialSupply must be a whole number, got {value!r}")
            amount = int(parsed)
    else:
        raise ValueError(f"initialSupply has unsupported type {type(value).__name__}")

    if amount < 0:
        raise ValueError(f"initialSupply cannot be negative: {amount}")
    if amount > MAX_WHOLE_UNITS:
        raise ValueError(f"initialSupply is too large: {amount}")
    return amount
