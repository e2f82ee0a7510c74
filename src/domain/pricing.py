from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MarginPolicy:
    """Platform spread around the market price.

    ``buy_discount`` lowers the price the platform pays when a customer sells
    to it, ``sell_markup`` raises the price it charges when a customer buys.
    Both are fractions (0.005 == 0.5%).
    """

    buy_discount: float
    sell_markup: float

    def __post_init__(self) -> None:
        if not 0 <= self.buy_discount < 1:
            msg = "buy_discount must be within [0, 1)"
            raise ValueError(msg)
        if self.sell_markup < 0:
            msg = "sell_markup must be >= 0"
            raise ValueError(msg)

    def apply(self, market_price: float) -> tuple[float, float]:
        buy = market_price * (1 - self.buy_discount)
        sell = market_price * (1 + self.sell_markup)
        return buy, sell


__all__ = ["MarginPolicy"]
