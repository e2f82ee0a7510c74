from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, NewType

CurrencyCode = NewType("CurrencyCode", str)

_WHITESPACE = re.compile(r"\s+")


class InvalidPairFormat(ValueError):
    def __init__(self, raw: Any, reason: str) -> None:
        super().__init__(f"Invalid pair {raw!r}: {reason}")
        self.raw = raw
        self.reason = reason


@dataclass(frozen=True)
class PairKey:
    """Normalized BASE-QUOTE currency pair."""

    base: CurrencyCode
    quote: CurrencyCode

    def __str__(self) -> str:
        return f"{self.base}-{self.quote}"

    def inverted(self) -> PairKey:
        return PairKey(base=self.quote, quote=self.base)


def normalize(raw: Any) -> PairKey:
    if isinstance(raw, PairKey):
        return raw
    if not isinstance(raw, str):
        raise InvalidPairFormat(raw, 'pair must be a string like "USDT-XOF"')

    cleaned = _WHITESPACE.sub("", raw).upper().replace("_", "-").replace("/", "-")
    if cleaned.count("-") != 1:
        raise InvalidPairFormat(raw, "expected exactly one separator")

    base, quote = cleaned.split("-", 1)
    if not base or not quote:
        raise InvalidPairFormat(raw, "base and quote must both be present")
    return PairKey(base=CurrencyCode(base), quote=CurrencyCode(quote))


__all__ = ["CurrencyCode", "InvalidPairFormat", "PairKey", "normalize"]
