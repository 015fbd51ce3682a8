"""Conversions between display amounts and integer base units."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_FLOOR

from .errors import ValidationError


def _to_decimal(value: Decimal | int | str) -> Decimal:
    # floats are refused: a binary fraction can round a limit upward
    if isinstance(value, float):
        raise ValidationError("Amounts must be given as str, int or Decimal, not float")
    try:
        dec = Decimal(str(value))
    except InvalidOperation as e:
        raise ValidationError(f"Invalid amount: {value!r}") from e
    if not dec.is_finite() or dec < 0:
        raise ValidationError(f"Amount must be a finite non-negative number: {value!r}")
    return dec


def limit_to_base_units(value: Decimal | int | str, decimals: int) -> int:
    """Convert a display limit to base units, rounding down (conservative)."""
    scaled = _to_decimal(value) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def amount_to_base_units(value: Decimal | int | str, decimals: int) -> int:
    """Convert a display spend amount to base units, rounding up (conservative)."""
    scaled = _to_decimal(value) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_CEILING))


def base_units_to_decimal(amount: int, decimals: int) -> Decimal:
    return Decimal(amount) / (Decimal(10) ** decimals)


def format_base_units(amount: int, decimals: int, symbol: str | None = None) -> str:
    """Format base units for display, e.g. ``1.5 SOL``."""
    text = f"{base_units_to_decimal(amount, decimals):f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text} {symbol}" if symbol else text
