from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Protocol

from domain.pair import CurrencyCode, PairKey

from .coinbase_source import CoinbaseSource
from .coingecko_source import CoinGeckoSource
from .price_types import ProviderCallResult, RateTableResult

if TYPE_CHECKING:  # pragma: no cover
    from config import AppSettings


class ProviderClient(Protocol):
    """One market-data backend.

    Implementations report failures through the result tags in
    ``price_types`` and never raise for provider or network trouble.
    """

    name: str

    def fetch_spot(self, pair: PairKey) -> ProviderCallResult: ...

    def fetch_rate_table(self, base: CurrencyCode) -> RateTableResult: ...


def _coinbase(settings: AppSettings) -> ProviderClient:
    return CoinbaseSource(
        base_url=settings.coinbase_base_url,
        timeout=settings.request_timeout_seconds,
        connect_retries=settings.connect_retries,
    )


def _coingecko(settings: AppSettings) -> ProviderClient:
    return CoinGeckoSource(
        base_url=settings.coingecko_base_url,
        timeout=settings.request_timeout_seconds,
        connect_retries=settings.connect_retries,
        api_key=settings.coingecko_api_key,
        coin_ids=settings.coingecko_coin_ids,
    )


_PROVIDER_REGISTRY: dict[str, Callable[[AppSettings], ProviderClient]] = {
    "coinbase": _coinbase,
    "coingecko": _coingecko,
}


def make_provider(kind: str, settings: AppSettings) -> ProviderClient:
    factory = _PROVIDER_REGISTRY.get(kind.lower())
    if factory is None:
        msg = f"Unknown price provider '{kind}'. Allowed: {sorted(_PROVIDER_REGISTRY)}"
        raise ValueError(msg)
    return factory(settings)


def build_providers(settings: AppSettings) -> list[ProviderClient]:
    return [make_provider(kind, settings) for kind in settings.providers]


__all__ = ["ProviderClient", "build_providers", "make_provider"]
