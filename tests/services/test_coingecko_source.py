from __future__ import annotations

from unittest.mock import Mock

import pytest

from domain.pair import normalize
from services.coingecko_source import CoinGeckoSource
from services.price_types import Ok, RateLimited, TransientError, Unsupported


def _mock_response(payload: object, status_code: int = 200, headers: dict[str, str] | None = None) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.headers = headers or {}
    return response


def test_fetch_spot_uses_coin_id_and_lowercase_vs_currency() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"tether": {"xof": 601.5}})
    source = CoinGeckoSource(base_url="https://example.com/api/v3", session=session)

    result = source.fetch_spot(normalize("USDT-XOF"))

    assert result == Ok(601.5)
    args, kwargs = session.request.call_args
    assert args[1] == "https://example.com/api/v3/simple/price"
    assert kwargs["params"] == {"ids": "tether", "vs_currencies": "xof"}


def test_fetch_spot_without_coin_id_is_unsupported_without_request() -> None:
    session = Mock()
    source = CoinGeckoSource(session=session, coin_ids={"BTC": "bitcoin"})

    result = source.fetch_spot(normalize("XYZ-USD"))

    assert isinstance(result, Unsupported)
    session.request.assert_not_called()


def test_fetch_spot_missing_vs_currency_is_unsupported() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"bitcoin": {}})
    source = CoinGeckoSource(session=session)

    assert isinstance(source.fetch_spot(normalize("BTC-XOF")), Unsupported)


def test_fetch_spot_rate_limited() -> None:
    session = Mock()
    session.request.return_value = _mock_response(
        {"status": {"error_code": 429, "error_message": "You've exceeded the Rate Limit"}},
        status_code=429,
        headers={"Retry-After": "30"},
    )
    source = CoinGeckoSource(session=session)

    assert source.fetch_spot(normalize("BTC-USD")) == RateLimited(retry_after=30.0)


def test_api_key_is_sent_as_header() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"bitcoin": {"usd": 64000}})
    source = CoinGeckoSource(session=session, api_key="demo-key")

    source.fetch_spot(normalize("BTC-USD"))

    assert session.request.call_args.kwargs["headers"]["x-cg-demo-api-key"] == "demo-key"


def test_fetch_rate_table_rebases_btc_values() -> None:
    session = Mock()
    session.request.return_value = _mock_response(
        {
            "rates": {
                "btc": {"name": "Bitcoin", "unit": "BTC", "value": 1, "type": "crypto"},
                "usd": {"name": "US Dollar", "unit": "$", "value": 64000, "type": "fiat"},
                "xof": {"name": "CFA Franc", "unit": "F", "value": 38_400_000, "type": "fiat"},
            }
        }
    )
    source = CoinGeckoSource(session=session)

    table = source.fetch_rate_table("USD")

    assert not isinstance(table, (Unsupported, TransientError, RateLimited))
    assert table.base == "USD"
    assert table.rates["USD"] == pytest.approx(1.0)
    assert table.rates["XOF"] == pytest.approx(600.0)
    assert table.rates["BTC"] == pytest.approx(1 / 64000)


def test_fetch_rate_table_unknown_base_is_unsupported() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"rates": {"btc": {"value": 1}}})
    source = CoinGeckoSource(session=session)

    assert isinstance(source.fetch_rate_table("XOF"), Unsupported)
