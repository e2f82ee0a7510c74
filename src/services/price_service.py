from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Sequence

from config import AppSettings, config
from domain.pair import PairKey, normalize
from domain.pricing import MarginPolicy
from utils.formatting import round_price

from .concurrency import ConcurrencyLimiter, SingleFlightGroup
from .cross_rate import CrossRateResolver
from .prewarmer import Prewarmer
from .price_sources import ProviderClient, build_providers
from .price_types import (
    Derivation,
    Direction,
    FetchFailed,
    Ok,
    PriceUnavailable,
    Quote,
    QuoteResponse,
    QuoteTimeout,
    ResolvedPrice,
)
from .quote_cache import QuoteCache, utc_now
from .retrying_fetcher import RetryingFetcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Resolution:
    quote: Quote
    stale: bool


class PriceService:
    """Resolves pairs into margin-adjusted quotes.

    A fresh cache entry is returned directly. Otherwise one shared fetch per
    pair runs on the service's worker pool: it takes a limiter slot, tries
    every provider directly, falls back to cross rates, applies the margin
    and stores the quote. If that fails and an older quote exists, the old
    quote is served flagged as stale; without one, ``PriceUnavailable`` is
    raised. Every caller waiting on the same fetch gets the same outcome.
    """

    def __init__(
        self,
        fetchers: Sequence[RetryingFetcher],
        *,
        margin: MarginPolicy,
        cross_resolver: CrossRateResolver | None = None,
        cache: QuoteCache | None = None,
        cache_ttl: timedelta = timedelta(seconds=30),
        max_concurrent_requests: int = 6,
        worker_threads: int = 16,
        leg_timeout: float = 20.0,
        quote_timeout: float = 30.0,
        price_decimals: int = 6,
        refresh_interval: float = 30.0,
        prewarm_pause: float = 0.12,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if not fetchers:
            msg = "at least one fetcher is required"
            raise ValueError(msg)

        self.fetchers = list(fetchers)
        self.margin = margin
        self.cross_resolver = cross_resolver or CrossRateResolver(
            self.fetchers, leg_timeout=leg_timeout, clock=monotonic
        )
        self.cache = cache or QuoteCache(clock=clock)
        self.cache_ttl = cache_ttl
        self.leg_timeout = leg_timeout
        self.quote_timeout = quote_timeout
        self.price_decimals = price_decimals
        self._clock = clock
        self._monotonic = monotonic

        self.limiter = ConcurrencyLimiter(max_concurrent_requests)
        self._executor = ThreadPoolExecutor(max_workers=worker_threads, thread_name_prefix="quote-fetch")
        self._flights: SingleFlightGroup[PairKey, _Resolution] = SingleFlightGroup(self._executor)
        self.prewarmer = Prewarmer(self._refresh, refresh_interval=refresh_interval, pause=prewarm_pause)

    # Public API -----------------------------------------------
    def get_price(
        self,
        pair: str | PairKey,
        *,
        amount: float | None = None,
        direction: str | Direction | None = None,
        timeout: float | None = None,
    ) -> QuoteResponse:
        key = normalize(pair)
        side = Direction(direction.lower()) if isinstance(direction, str) else direction
        if amount is not None and (not math.isfinite(amount) or amount < 0):
            msg = "amount must be a non-negative number"
            raise ValueError(msg)

        resolution = self._get_quote(key, timeout=timeout)
        return self._to_response(resolution.quote, stale=resolution.stale, amount=amount, direction=side)

    def get_cached(self, pair: str | PairKey) -> QuoteResponse | None:
        cached = self.cache.peek(normalize(pair))
        if cached is None:
            return None
        quote, fresh = cached
        return self._to_response(quote, stale=not fresh)

    def prewarm_pairs(self, pairs: Iterable[str | PairKey]) -> None:
        self.prewarmer.prewarm_pairs(pairs)

    def start(self, pairs: Iterable[str | PairKey] = ()) -> None:
        pairs = list(pairs)
        if pairs:
            self.prewarm_pairs(pairs)
        else:
            self.prewarmer.start()

    def close(self) -> None:
        self.prewarmer.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> PriceService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Internal --------------------------------------------------
    def _refresh(self, pair: PairKey) -> _Resolution:
        return self._get_quote(pair, force_refresh=True)

    def _get_quote(
        self,
        pair: PairKey,
        *,
        timeout: float | None = None,
        force_refresh: bool = False,
    ) -> _Resolution:
        cached = None if force_refresh else self.cache.get(pair)
        if cached is not None:
            logger.debug("cache hit for %s", pair)
            return _Resolution(cached, stale=False)

        try:
            future = self._flights.do(pair, lambda: self._fetch_and_cache(pair))
        except RuntimeError as exc:
            return self._stale_or_raise(PriceUnavailable(pair, f"price service is closed: {exc}"))

        wait_for = self.quote_timeout if timeout is None else timeout
        try:
            return future.result(timeout=wait_for)
        except FutureTimeoutError:
            logger.warning("gave up waiting for %s after %.1fs; fetch continues in background", pair, wait_for)
            return self._stale_or_raise(QuoteTimeout(pair, wait_for))

    def _fetch_and_cache(self, pair: PairKey) -> _Resolution:
        with self.limiter.slot():
            try:
                quote = self._to_quote(pair, self._resolve(pair))
            except PriceUnavailable as exc:
                return self._stale_or_raise(exc)

        self.cache.put(pair, quote, self.cache_ttl)
        return _Resolution(quote, stale=False)

    def _to_quote(self, pair: PairKey, resolved: ResolvedPrice) -> Quote:
        buy, sell = self.margin.apply(resolved.price)
        try:
            return Quote(
                pair=pair,
                market_price=resolved.price,
                buy_price_for_platform=buy,
                sell_price_for_platform=sell,
                resolved_at=self._clock(),
                source=resolved.source,
                derivation=resolved.derivation,
            )
        except ValueError as exc:
            logger.warning("discarding unusable %s price from %s: %s", pair, resolved.source, exc)
            raise PriceUnavailable(pair, f"Unusable price for {pair}: {exc}") from exc

    def _stale_or_raise(self, error: PriceUnavailable) -> _Resolution:
        stale = self.cache.get_stale_fallback(error.pair)
        if stale is None:
            raise error
        logger.warning("serving stale %s quote from %s", error.pair, stale.resolved_at.isoformat())
        return _Resolution(stale, stale=True)

    def _resolve(self, pair: PairKey) -> ResolvedPrice:
        deadline = self._monotonic() + self.leg_timeout
        for fetcher in self.fetchers:
            if self._monotonic() >= deadline:
                logger.warning("direct lookup of %s ran out of time", pair)
                break
            try:
                result = fetcher.fetch_with_retry(pair, deadline=deadline)
            except FetchFailed as exc:
                logger.warning("direct fetch failed: %s", exc)
                continue
            if isinstance(result, Ok):
                return ResolvedPrice(price=result.price, source=fetcher.source, derivation=Derivation.DIRECT)
            logger.info("%s does not quote %s directly (%s)", fetcher.source, pair, result.reason)

        return self.cross_resolver.resolve(pair)

    def _to_response(
        self,
        quote: Quote,
        *,
        stale: bool,
        amount: float | None = None,
        direction: Direction | None = None,
    ) -> QuoteResponse:
        def rounded(value: float) -> float:
            return round_price(value, self.price_decimals)

        # A customer buying pays the platform's sell price, and vice versa.
        price_for = {
            Direction.BUY: quote.sell_price_for_platform,
            Direction.SELL: quote.buy_price_for_platform,
        }
        converted_amount: float | None = None
        converted_amounts: dict[Direction, float] | None = None
        if amount is not None:
            if direction is not None:
                converted_amount = rounded(amount * price_for[direction])
            else:
                converted_amounts = {side: rounded(amount * price) for side, price in price_for.items()}

        return QuoteResponse(
            pair=str(quote.pair),
            market_price=rounded(quote.market_price),
            buy_price_for_platform=rounded(quote.buy_price_for_platform),
            sell_price_for_platform=rounded(quote.sell_price_for_platform),
            resolved_at=quote.resolved_at,
            stale=stale,
            source=quote.source,
            derivation=quote.derivation,
            converted_amount=converted_amount,
            converted_amounts=converted_amounts,
        )


def build_price_service(settings: AppSettings | None = None) -> PriceService:
    settings = settings or config()
    providers: list[ProviderClient] = build_providers(settings)
    fetchers = [
        RetryingFetcher(
            provider,
            max_attempts=settings.max_retry_attempts,
            base_delay=settings.retry_base_delay_seconds,
            default_rate_limit_delay=settings.rate_limit_default_delay_seconds,
            max_rate_limit_wait=settings.rate_limit_max_wait_seconds,
        )
        for provider in providers
    ]
    cross_resolver = CrossRateResolver(
        fetchers,
        bridge_currency=settings.bridge_currency,
        leg_timeout=settings.leg_timeout_seconds,
    )
    service = PriceService(
        fetchers,
        margin=MarginPolicy(buy_discount=settings.buy_discount, sell_markup=settings.sell_markup),
        cross_resolver=cross_resolver,
        cache_ttl=timedelta(seconds=settings.cache_ttl_seconds),
        max_concurrent_requests=settings.max_concurrent_requests,
        worker_threads=settings.worker_threads,
        leg_timeout=settings.leg_timeout_seconds,
        quote_timeout=settings.quote_timeout_seconds,
        price_decimals=settings.price_decimals,
        refresh_interval=settings.refresh_interval_seconds,
        prewarm_pause=settings.prewarm_pause_seconds,
    )
    if settings.prewarm_pairs:
        service.start(settings.prewarm_pairs)
    return service


__all__ = ["PriceService", "build_price_service"]
