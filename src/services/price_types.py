from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from domain.pair import CurrencyCode, PairKey


class Derivation(StrEnum):
    DIRECT = "direct"
    CROSS = "cross"
    INVERTED = "inverted"


class Direction(StrEnum):
    BUY = "buy"
    SELL = "sell"


# Provider call results. Clients return one of these instead of raising.


@dataclass(frozen=True)
class Ok:
    price: float


@dataclass(frozen=True)
class Unsupported:
    reason: str = ""


@dataclass(frozen=True)
class RateLimited:
    retry_after: float | None = None


@dataclass(frozen=True)
class TransientError:
    cause: str


@dataclass(frozen=True)
class RateTable:
    """Units of each currency per one unit of ``base``."""

    base: CurrencyCode
    rates: dict[str, float] = field(default_factory=dict)


ProviderFailure = Unsupported | RateLimited | TransientError
ProviderCallResult = Ok | ProviderFailure
RateTableResult = RateTable | ProviderFailure


@dataclass(frozen=True)
class Quote:
    pair: PairKey
    market_price: float
    buy_price_for_platform: float
    sell_price_for_platform: float
    resolved_at: datetime
    source: str
    derivation: Derivation

    def __post_init__(self) -> None:
        for name in ("market_price", "buy_price_for_platform", "sell_price_for_platform"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                msg = f"{name} must be a positive number, got {value!r}"
                raise ValueError(msg)


@dataclass(frozen=True)
class ResolvedPrice:
    price: float
    source: str
    derivation: Derivation


class FetchFailed(RuntimeError):
    def __init__(self, label: str, last_failure: ProviderFailure, *, timed_out: bool = False) -> None:
        reason = "deadline reached" if timed_out else "retries exhausted"
        super().__init__(f"Fetching {label} failed ({reason}): {last_failure}")
        self.label = label
        self.last_failure = last_failure
        self.timed_out = timed_out


class PriceUnavailable(RuntimeError):
    def __init__(self, pair: PairKey, message: str | None = None) -> None:
        super().__init__(message or f"No price available for {pair}")
        self.pair = pair


class QuoteTimeout(PriceUnavailable):
    def __init__(self, pair: PairKey, timeout: float) -> None:
        super().__init__(pair, f"Timed out after {timeout:g}s waiting for a price for {pair}")
        self.timeout = timeout


class QuoteResponse(BaseModel):
    """Caller-facing quote, rounded for presentation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    pair: str
    market_price: float
    buy_price_for_platform: float
    sell_price_for_platform: float
    resolved_at: datetime
    stale: bool
    source: str
    derivation: Derivation
    converted_amount: float | None = None
    converted_amounts: dict[Direction, float] | None = None


__all__ = [
    "Derivation",
    "Direction",
    "FetchFailed",
    "Ok",
    "PriceUnavailable",
    "ProviderCallResult",
    "ProviderFailure",
    "Quote",
    "QuoteResponse",
    "QuoteTimeout",
    "RateLimited",
    "RateTable",
    "RateTableResult",
    "ResolvedPrice",
    "TransientError",
    "Unsupported",
]
