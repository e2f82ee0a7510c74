from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from domain.pair import CurrencyCode, PairKey

from .price_sources import ProviderClient
from .price_types import (
    FetchFailed,
    Ok,
    ProviderFailure,
    RateLimited,
    RateTable,
    TransientError,
    Unsupported,
)

logger = logging.getLogger(__name__)

_T = TypeVar("_T", Ok, RateTable)

# Floor for rate-limit waits when the provider hints 0 or a past date.
_MIN_RATE_LIMIT_DELAY = 0.1


class RetryingFetcher:
    """Retry policy around a single provider.

    Transient errors are retried until ``max_attempts`` calls have been made,
    sleeping ``base_delay * 2**(n - 1)`` after the n-th failure. Rate-limit
    responses are waited out (the provider hint, else
    ``default_rate_limit_delay``, never less than ``base_delay``) without
    using up attempts, until the time since the first rate limit would pass
    ``max_rate_limit_wait``.
    ``Unsupported`` is returned immediately.

    ``deadline`` is a ``clock()`` value; a backoff that would end after it
    fails the fetch instead of sleeping.
    """

    def __init__(
        self,
        provider: ProviderClient,
        *,
        max_attempts: int = 3,
        base_delay: float = 0.3,
        default_rate_limit_delay: float = 2.0,
        max_rate_limit_wait: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_attempts < 1:
            msg = "max_attempts must be >= 1"
            raise ValueError(msg)
        if base_delay < 0 or default_rate_limit_delay < 0 or max_rate_limit_wait < 0:
            msg = "delays must be >= 0"
            raise ValueError(msg)

        self.provider = provider
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.default_rate_limit_delay = default_rate_limit_delay
        self.max_rate_limit_wait = max_rate_limit_wait
        self._sleep = sleep
        self._clock = clock

    @property
    def source(self) -> str:
        return self.provider.name

    def fetch_with_retry(
        self,
        pair: PairKey,
        max_attempts: int | None = None,
        *,
        deadline: float | None = None,
    ) -> Ok | Unsupported:
        return self._run(
            f"{self.source}:{pair}",
            lambda: self.provider.fetch_spot(pair),
            Ok,
            max_attempts or self.max_attempts,
            deadline,
        )

    def fetch_rate_table(self, base: CurrencyCode, *, deadline: float | None = None) -> RateTable | Unsupported:
        return self._run(
            f"{self.source}:rates/{base}",
            lambda: self.provider.fetch_rate_table(base),
            RateTable,
            self.max_attempts,
            deadline,
        )

    def _run(
        self,
        label: str,
        call: Callable[[], _T | ProviderFailure],
        success_type: type[_T],
        max_attempts: int,
        deadline: float | None,
    ) -> _T | Unsupported:
        failures = 0
        rate_limited_since: float | None = None
        rate_limited_for = 0.0

        while True:
            result = call()
            if isinstance(result, (success_type, Unsupported)):
                return result

            if isinstance(result, RateLimited):
                hint = result.retry_after if result.retry_after is not None else self.default_rate_limit_delay
                delay = max(hint, self.base_delay, _MIN_RATE_LIMIT_DELAY)
                now = self._clock()
                if rate_limited_since is None:
                    rate_limited_since = now
                waited = max(now - rate_limited_since, rate_limited_for)
                if waited + delay > self.max_rate_limit_wait:
                    logger.warning("%s still rate-limited after %.1fs, giving up", label, waited)
                    raise FetchFailed(label, result)
                rate_limited_for += delay
            elif isinstance(result, TransientError):
                failures += 1
                if failures >= max_attempts:
                    logger.warning("%s failed after %d attempts: %s", label, failures, result.cause)
                    raise FetchFailed(label, result)
                delay = self.base_delay * 2 ** (failures - 1)
            else:
                msg = f"{label} returned unexpected result {result!r}"
                raise TypeError(msg)

            if deadline is not None and self._clock() + delay > deadline:
                logger.warning("%s would pass its deadline waiting %.2fs, giving up", label, delay)
                raise FetchFailed(label, result, timed_out=True)

            logger.info("%s: %s, retrying in %.2fs", label, type(result).__name__, delay)
            self._sleep(delay)


__all__ = ["RetryingFetcher"]
