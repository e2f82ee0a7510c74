from __future__ import annotations

from urllib.parse import quote as url_quote

import requests

from domain.pair import CurrencyCode, PairKey

from .http_source import JsonHttpSource
from .price_types import Ok, ProviderCallResult, RateTable, RateTableResult, TransientError

# API docs: https://docs.cdp.coinbase.com/coinbase-app/docs/api-prices
# and https://docs.cdp.coinbase.com/coinbase-app/docs/api-exchange-rates


class CoinbaseSource(JsonHttpSource):
    """Spot prices and exchange-rate tables from the public Coinbase v2 API."""

    name = "coinbase"

    def __init__(
        self,
        *,
        base_url: str = "https://api.coinbase.com/v2",
        timeout: float = 8.0,
        session: requests.Session | None = None,
        connect_retries: int = 1,
    ) -> None:
        super().__init__(base_url=base_url, timeout=timeout, session=session, connect_retries=connect_retries)

    def fetch_spot(self, pair: PairKey) -> ProviderCallResult:
        payload = self._get_json(f"/prices/{url_quote(str(pair), safe='')}/spot")
        if not isinstance(payload, dict):
            return payload

        data = payload.get("data")
        amount = data.get("amount") if isinstance(data, dict) else None
        price = self._to_price(amount)
        if price is None:
            return TransientError(f"Coinbase spot payload for {pair} has no usable amount: {amount!r}")
        return Ok(price)

    def fetch_rate_table(self, base: CurrencyCode) -> RateTableResult:
        payload = self._get_json("/exchange-rates", params={"currency": base})
        if not isinstance(payload, dict):
            return payload

        data = payload.get("data")
        rates_raw = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(rates_raw, dict):
            return TransientError(f"Coinbase exchange-rates payload for {base} missing rates")

        rates: dict[str, float] = {}
        for code_raw, value in rates_raw.items():
            rate = self._to_price(value)
            if rate is not None:
                rates[str(code_raw).upper()] = rate
        return RateTable(base=CurrencyCode(str(data.get("currency") or base).upper()), rates=rates)


__all__ = ["CoinbaseSource"]
