from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


def round_price(value: float, decimals: int = 6) -> float:
    """Round half-up to ``decimals`` places for presentation.

    Only applied when building caller-facing responses; internal arithmetic
    keeps full float precision.
    """
    if decimals < 0:
        msg = "decimals must be >= 0"
        raise ValueError(msg)
    step = Decimal(1).scaleb(-decimals)
    return float(Decimal(repr(value)).quantize(step, rounding=ROUND_HALF_UP))

