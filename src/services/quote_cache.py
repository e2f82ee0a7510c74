from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from domain.pair import PairKey

from .price_types import Quote


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _CacheEntry:
    quote: Quote
    expires_at: datetime


class QuoteCache:
    """Last resolved quote per pair.

    Entries are never evicted: once past ``expires_at`` they stop counting as
    hits but stay available through ``get_stale_fallback``.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._entries: dict[PairKey, _CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, pair: PairKey) -> Quote | None:
        with self._lock:
            entry = self._entries.get(pair)
        if entry is None or self._clock() >= entry.expires_at:
            return None
        return entry.quote

    def put(self, pair: PairKey, quote: Quote, ttl: timedelta) -> None:
        entry = _CacheEntry(quote=quote, expires_at=self._clock() + ttl)
        with self._lock:
            self._entries[pair] = entry

    def get_stale_fallback(self, pair: PairKey) -> Quote | None:
        with self._lock:
            entry = self._entries.get(pair)
        return entry.quote if entry is not None else None

    def peek(self, pair: PairKey) -> tuple[Quote, bool] | None:
        """Return the stored quote and whether it is still fresh."""
        with self._lock:
            entry = self._entries.get(pair)
        if entry is None:
            return None
        return entry.quote, self._clock() < entry.expires_at


__all__ = ["QuoteCache", "utc_now"]
