from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from domain.pair import CurrencyCode, PairKey

from .price_types import Derivation, FetchFailed, Ok, PriceUnavailable, RateTable, ResolvedPrice
from .retrying_fetcher import RetryingFetcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Leg:
    value: float
    source: str | None


def _join_sources(*legs: _Leg) -> str:
    sources: list[str] = []
    for leg in legs:
        if leg.source is not None and leg.source not in sources:
            sources.append(leg.source)
    return "+".join(sources) or "identity"


class CrossRateResolver:
    """Prices a pair no provider quotes directly by going through a bridge currency.

    Strategies, first success wins:

    1. ``BASE-BRIDGE`` spot times the bridge rate table's QUOTE entry (cross).
    2. ``BASE-BRIDGE`` spot divided by ``QUOTE-BRIDGE`` spot (inverted).
    3. ``1 / QUOTE-BASE`` spot (inverted).

    Each leg asks the fetchers in priority order within one deadline shared
    by all of them.
    """

    def __init__(
        self,
        fetchers: Sequence[RetryingFetcher],
        *,
        bridge_currency: str = "USD",
        leg_timeout: float = 20.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not fetchers:
            msg = "at least one fetcher is required"
            raise ValueError(msg)
        if leg_timeout <= 0:
            msg = "leg_timeout must be > 0"
            raise ValueError(msg)

        self.fetchers = list(fetchers)
        self.bridge_currency = CurrencyCode(bridge_currency.upper())
        self.leg_timeout = leg_timeout
        self._clock = clock

    def resolve(self, pair: PairKey) -> ResolvedPrice:
        bridge = self.bridge_currency

        base_leg = self._bridge_leg(pair.base)
        if base_leg is not None:
            quote_rate = self._bridge_rate(pair.quote)
            if quote_rate is not None:
                logger.info("%s priced via %s rate table", pair, bridge)
                return ResolvedPrice(
                    price=base_leg.value * quote_rate.value,
                    source=_join_sources(base_leg, quote_rate),
                    derivation=Derivation.CROSS,
                )

            quote_leg = self._bridge_leg(pair.quote)
            if quote_leg is not None:
                logger.info("%s priced via inverted %s-%s", pair, pair.quote, bridge)
                return ResolvedPrice(
                    price=base_leg.value * (1 / quote_leg.value),
                    source=_join_sources(base_leg, quote_leg),
                    derivation=Derivation.INVERTED,
                )

        reverse = self._spot(pair.inverted())
        if reverse is not None:
            logger.info("%s priced by inverting %s", pair, pair.inverted())
            return ResolvedPrice(
                price=1 / reverse.value,
                source=_join_sources(reverse),
                derivation=Derivation.INVERTED,
            )

        raise PriceUnavailable(pair)

    def _bridge_leg(self, currency: CurrencyCode) -> _Leg | None:
        if currency == self.bridge_currency:
            return _Leg(1.0, None)
        return self._spot(PairKey(base=currency, quote=self.bridge_currency))

    def _bridge_rate(self, currency: CurrencyCode) -> _Leg | None:
        if currency == self.bridge_currency:
            return _Leg(1.0, None)
        deadline = self._leg_deadline()
        for fetcher in self.fetchers:
            if self._clock() >= deadline:
                logger.warning("rate table leg for %s ran out of time", currency)
                break
            try:
                result = fetcher.fetch_rate_table(self.bridge_currency, deadline=deadline)
            except FetchFailed as exc:
                logger.warning("rate table leg failed: %s", exc)
                continue
            if isinstance(result, RateTable):
                rate = result.rates.get(currency)
                if rate is not None and rate > 0:
                    return _Leg(rate, fetcher.source)
        return None

    def _spot(self, pair: PairKey) -> _Leg | None:
        deadline = self._leg_deadline()
        for fetcher in self.fetchers:
            if self._clock() >= deadline:
                logger.warning("spot leg %s ran out of time", pair)
                break
            try:
                result = fetcher.fetch_with_retry(pair, deadline=deadline)
            except FetchFailed as exc:
                logger.warning("spot leg failed: %s", exc)
                continue
            if isinstance(result, Ok):
                return _Leg(result.price, fetcher.source)
        return None

    def _leg_deadline(self) -> float:
        return self._clock() + self.leg_timeout


__all__ = ["CrossRateResolver"]
