from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future
from contextlib import contextmanager
from typing import Callable, Generic, Hashable, Iterator, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


class SingleFlightGroup(Generic[K, T]):
    """At most one outstanding call per key.

    The first caller for a key submits the work to ``executor``; callers that
    arrive while it runs get the same future and therefore the same result or
    exception. The key is released before the future completes, so a caller
    that has seen the outcome always starts a new call.
    """

    def __init__(self, executor: Executor) -> None:
        self._executor = executor
        self._in_flight: dict[K, Future[T]] = {}
        self._lock = threading.Lock()

    def do(self, key: K, fn: Callable[[], T]) -> Future[T]:
        with self._lock:
            existing = self._in_flight.get(key)
            if existing is not None:
                logger.debug("joining in-flight call for %s", key)
                return existing
            future: Future[T] = Future()
            self._in_flight[key] = future

        try:
            submitted = self._executor.submit(self._call, key, fn, future)
        except RuntimeError:
            self._forget(key, future)
            raise
        submitted.add_done_callback(lambda done: self._on_submitted_done(key, future, done))
        return future

    def in_flight(self, key: K) -> bool:
        with self._lock:
            return key in self._in_flight

    def _call(self, key: K, fn: Callable[[], T], future: Future[T]) -> None:
        if not future.set_running_or_notify_cancel():
            self._forget(key, future)
            return
        try:
            result = fn()
        except BaseException as exc:
            self._forget(key, future)
            future.set_exception(exc)
        else:
            self._forget(key, future)
            future.set_result(result)

    def _on_submitted_done(self, key: K, future: Future[T], submitted: Future[None]) -> None:
        # Executor shutdown cancels queued work before _call ever runs.
        if submitted.cancelled():
            self._forget(key, future)
            future.cancel()

    def _forget(self, key: K, future: Future[T]) -> None:
        with self._lock:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]


class ConcurrencyLimiter:
    """Global cap on simultaneous outbound provider work."""

    def __init__(self, limit: int) -> None:
        if limit < 1:
            msg = "limit must be >= 1"
            raise ValueError(msg)
        self.limit = limit
        self._semaphore = threading.BoundedSemaphore(limit)
        self._lock = threading.Lock()
        self._in_use = 0

    @property
    def in_use(self) -> int:
        with self._lock:
            return self._in_use

    @contextmanager
    def slot(self) -> Iterator[None]:
        self._semaphore.acquire()
        with self._lock:
            self._in_use += 1
        try:
            yield
        finally:
            with self._lock:
                self._in_use -= 1
            self._semaphore.release()


__all__ = ["ConcurrencyLimiter", "SingleFlightGroup"]
