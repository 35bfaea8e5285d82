"""Fixed-point amounts — decimal coins to integer minor units and back.

Every value inside the core is an ``int`` count of minor units
(10^-8 of one coin). Conversions go through :class:`decimal.Decimal` so no
binary floating point is ever involved.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

COIN = 100_000_000
DECIMALS = 8
MAX_MONEY = 1_200_000_000 * COIN


def to_minor_units(value: Decimal | str | int) -> int:
    """Convert a coin amount to integer minor units.

    Args:
        value: Amount in whole coins, e.g. ``"10.5"`` or ``Decimal("0.0005")``.

    Returns:
        The amount in minor units.

    Raises:
        TypeError: For ``float`` input.
        ValueError: For non-numeric strings or more than 8 decimals.
    """
    if isinstance(value, float):
        msg = "float amounts are not accepted; pass str or Decimal"
        raise TypeError(msg)
    try:
        dec = Decimal(value)
    except InvalidOperation as exc:
        msg = f"Invalid amount: {value!r}"
        raise ValueError(msg) from exc
    if not dec.is_finite():
        msg = f"Invalid amount: {value!r}"
        raise ValueError(msg)
    scaled = dec * COIN
    if scaled != scaled.to_integral_value():
        msg = f"Amount {value} has more than {DECIMALS} fractional digits"
        raise ValueError(msg)
    return int(scaled)


def from_minor_units(units: int) -> Decimal:
    """Convert minor units back to a coin ``Decimal`` with 8 places."""
    return (Decimal(units) / COIN).quantize(Decimal(1).scaleb(-DECIMALS))


def format_amount(units: int) -> str:
    """Render minor units as a fixed 8-decimal string (``"9.99950000"``)."""
    return f"{from_minor_units(units):.8f}"
