from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

from domain.pair import CurrencyCode, PairKey, normalize
from services.price_types import ProviderCallResult, RateTable, RateTableResult, Unsupported


class StubProvider:
    """Provider returning scripted results.

    ``spot`` maps a pair string to one result (repeated forever) or a list of
    results consumed in order, the last one repeating. Unknown pairs are
    ``Unsupported``. Every call is recorded.
    """

    def __init__(
        self,
        *,
        name: str = "stub",
        spot: dict[str, ProviderCallResult | Iterable[ProviderCallResult]] | None = None,
        tables: dict[str, RateTableResult | Iterable[RateTableResult]] | None = None,
        gate: threading.Event | None = None,
    ) -> None:
        self.name = name
        self._spot = {normalize(key): self._script(value) for key, value in (spot or {}).items()}
        self._tables = {key.upper(): self._script(value) for key, value in (tables or {}).items()}
        self._gate = gate
        self._lock = threading.Lock()
        self.spot_calls: list[PairKey] = []
        self.table_calls: list[str] = []

    @staticmethod
    def _script(value: object) -> deque:
        if isinstance(value, (list, tuple)):
            return deque(value)
        return deque([value])

    @staticmethod
    def _next(script: deque) -> object:
        return script.popleft() if len(script) > 1 else script[0]

    def fetch_spot(self, pair: PairKey) -> ProviderCallResult:
        if self._gate is not None:
            self._gate.wait(5)
        with self._lock:
            self.spot_calls.append(pair)
            script = self._spot.get(pair)
            if script is None:
                return Unsupported(f"{self.name} has no {pair}")
            return self._next(script)  # type: ignore[return-value]

    def fetch_rate_table(self, base: CurrencyCode) -> RateTableResult:
        with self._lock:
            self.table_calls.append(base)
            script = self._tables.get(base.upper())
            if script is None:
                return Unsupported(f"{self.name} has no table for {base}")
            return self._next(script)  # type: ignore[return-value]

    def calls_for(self, pair: str) -> int:
        key = normalize(pair)
        with self._lock:
            return sum(1 for call in self.spot_calls if call == key)


def usd_table(**rates: float) -> RateTable:
    return RateTable(base=CurrencyCode("USD"), rates={code.upper(): rate for code, rate in rates.items()})


@dataclass
class FakeClock:
    """Manually advanced wall clock (aware UTC) with a matching monotonic view."""

    now: datetime = field(default_factory=lambda: datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc))
    _start: datetime = field(init=False)

    def __post_init__(self) -> None:
        self._start = self.now

    def __call__(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return (self.now - self._start).total_seconds()

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class RecordingSleep:
    """Stand-in for ``time.sleep`` that records delays and advances a clock."""

    clock: FakeClock | None = None
    delays: list[float] = field(default_factory=list)

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)
