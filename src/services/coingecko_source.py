from __future__ import annotations

from typing import Mapping

import requests

from domain.pair import CurrencyCode, PairKey

from .http_source import JsonHttpSource
from .price_types import Ok, ProviderCallResult, RateTable, RateTableResult, TransientError, Unsupported

DEFAULT_COIN_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT": "tether",
    "USDC": "usd-coin",
    "SOL": "solana",
    "BNB": "binancecoin",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "MATIC": "matic-network",
    "LTC": "litecoin",
}


class CoinGeckoSource(JsonHttpSource):
    """CoinGecko ``simple/price`` spot lookups.

    CoinGecko keys coins by id rather than ticker, so only symbols present in
    ``coin_ids`` can be priced as a base; everything else is ``Unsupported``.
    Its ``/exchange_rates`` table is BTC-denominated and gets rebased onto the
    requested currency.
    """

    name = "coingecko"

    def __init__(
        self,
        *,
        base_url: str = "https://api.coingecko.com/api/v3",
        timeout: float = 8.0,
        session: requests.Session | None = None,
        connect_retries: int = 1,
        api_key: str | None = None,
        coin_ids: Mapping[str, str] | None = None,
    ) -> None:
        headers = {"x-cg-demo-api-key": api_key} if api_key else None
        super().__init__(
            base_url=base_url,
            timeout=timeout,
            session=session,
            connect_retries=connect_retries,
            headers=headers,
        )
        ids = coin_ids if coin_ids is not None else DEFAULT_COIN_IDS
        self.coin_ids = {symbol.upper(): coin_id for symbol, coin_id in ids.items()}

    def fetch_spot(self, pair: PairKey) -> ProviderCallResult:
        coin_id = self.coin_ids.get(pair.base)
        if coin_id is None:
            return Unsupported(f"no CoinGecko id for {pair.base}")

        vs_currency = pair.quote.lower()
        payload = self._get_json("/simple/price", params={"ids": coin_id, "vs_currencies": vs_currency})
        if not isinstance(payload, dict):
            return payload

        prices = payload.get(coin_id)
        if not isinstance(prices, dict) or vs_currency not in prices:
            return Unsupported(f"CoinGecko has no {pair.quote} price for {coin_id}")

        price = self._to_price(prices[vs_currency])
        if price is None:
            return TransientError(f"CoinGecko returned unusable price for {pair}: {prices[vs_currency]!r}")
        return Ok(price)

    def fetch_rate_table(self, base: CurrencyCode) -> RateTableResult:
        payload = self._get_json("/exchange_rates")
        if not isinstance(payload, dict):
            return payload

        rates_raw = payload.get("rates")
        if not isinstance(rates_raw, dict):
            return TransientError("CoinGecko exchange_rates payload missing rates")

        btc_values: dict[str, float] = {}
        for code_raw, entry in rates_raw.items():
            value = self._to_price(entry.get("value")) if isinstance(entry, dict) else None
            if value is not None:
                btc_values[str(code_raw).upper()] = value

        base_value = btc_values.get(base.upper())
        if base_value is None:
            return Unsupported(f"CoinGecko exchange_rates has no {base}")

        rates = {code: value / base_value for code, value in btc_values.items()}
        return RateTable(base=CurrencyCode(base.upper()), rates=rates)


__all__ = ["CoinGeckoSource", "DEFAULT_COIN_IDS"]
