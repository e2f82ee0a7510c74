from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable

from domain.pair import PairKey, normalize

logger = logging.getLogger(__name__)


class Prewarmer:
    """Keeps a set of hot pairs fresh ahead of caller demand.

    A daemon thread walks the warm pairs once per ``refresh_interval``,
    calling ``fetch`` for each in turn with ``pause`` seconds between calls.
    Registering new pairs wakes the loop so they are fetched right away.
    """

    def __init__(
        self,
        fetch: Callable[[PairKey], Any],
        *,
        refresh_interval: float = 30.0,
        pause: float = 0.12,
    ) -> None:
        if refresh_interval <= 0:
            msg = "refresh_interval must be > 0"
            raise ValueError(msg)
        if pause < 0:
            msg = "pause must be >= 0"
            raise ValueError(msg)

        self._fetch = fetch
        self.refresh_interval = refresh_interval
        self.pause = pause
        self._pairs: dict[PairKey, None] = {}
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def pairs(self) -> list[PairKey]:
        with self._lock:
            return list(self._pairs)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def prewarm_pairs(self, pairs: Iterable[str | PairKey]) -> None:
        normalized = [normalize(pair) for pair in pairs]
        with self._lock:
            for pair in normalized:
                self._pairs.setdefault(pair, None)
        self.start()
        self._wake.set()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stopped.clear()
            self._thread = threading.Thread(target=self._run, name="quote-prewarmer", daemon=True)
            self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stopped.set()
        self._wake.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        with self._lock:
            self._thread = None
            self._pairs.clear()

    def refresh_once(self) -> int:
        """Fetch every warm pair once; returns how many succeeded."""
        refreshed = 0
        for index, pair in enumerate(self.pairs):
            if self._stopped.is_set():
                break
            if index and self.pause:
                self._stopped.wait(self.pause)
            try:
                self._fetch(pair)
                refreshed += 1
            except Exception:
                logger.warning("prewarm of %s failed", pair, exc_info=True)
        return refreshed

    def _run(self) -> None:
        logger.info("prewarmer started (interval %.1fs)", self.refresh_interval)
        while not self._stopped.is_set():
            self._wake.clear()
            self.refresh_once()
            self._wake.wait(self.refresh_interval)
        logger.info("prewarmer stopped")


__all__ = ["Prewarmer"]
