"""Conversion of quoted USDC amounts into atomic units."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any

USDC_DECIMALS = 6
ATOMIC_UNITS_PER_USDC = 10**USDC_DECIMALS

# 0.01 USDC, used when the server omits or garbles the amount.
DEFAULT_ATOMIC_AMOUNT = 10_000


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def _scale_decimal(value: Decimal) -> int:
    if not value.is_finite():
        return DEFAULT_ATOMIC_AMOUNT
    return _floor(value * ATOMIC_UNITS_PER_USDC)


def normalize_amount(amount_raw: Any) -> int:
    """
    Normalize a quote's ``maxAmountRequired`` into atomic units.

    Servers are not consistent about the encoding, so both decimal USDC and
    atomic units are accepted:

    - ``None`` -> :data:`DEFAULT_ATOMIC_AMOUNT`
    - number below 1 -> decimal USDC (``0.03`` -> ``30000``)
    - number of 1 or more -> atomic units, floored
    - string with a ``.`` -> decimal USDC (``"0.03"`` -> ``30000``)
    - other strings -> atomic units (``"30000"`` -> ``30000``)

    Zero, negative or unparseable input falls back to the default. This function
    never raises.

    Args:
        amount_raw: The amount exactly as received from the server.

    Returns:
        A positive integer count of atomic units.
    """
    if amount_raw is None or isinstance(amount_raw, bool):
        return DEFAULT_ATOMIC_AMOUNT

    if isinstance(amount_raw, (int, float)):
        try:
            value = Decimal(str(amount_raw))
        except InvalidOperation:
            return DEFAULT_ATOMIC_AMOUNT
        if not value.is_finite():
            return DEFAULT_ATOMIC_AMOUNT
        atomic = _scale_decimal(value) if value < 1 else _floor(value)
    elif isinstance(amount_raw, str):
        text = amount_raw.strip()
        if "." in text:
            try:
                atomic = _scale_decimal(Decimal(text))
            except InvalidOperation:
                return DEFAULT_ATOMIC_AMOUNT
        else:
            try:
                atomic = int(text, 10)
            except ValueError:
                return DEFAULT_ATOMIC_AMOUNT
    else:
        return DEFAULT_ATOMIC_AMOUNT

    if atomic <= 0:
        return DEFAULT_ATOMIC_AMOUNT
    return atomic


def atomic_to_usdc(atomic: int) -> Decimal:
    return Decimal(atomic) / ATOMIC_UNITS_PER_USDC


def format_usdc(atomic: int) -> str:
    """Render atomic units as a USDC string with four decimals, e.g. ``"0.0300"``."""
    return f"{atomic_to_usdc(atomic):.4f}"
