from __future__ import annotations

from typing import Callable

import pytest

from domain.pair import normalize
from services.cross_rate import CrossRateResolver
from services.price_types import Derivation, Ok, PriceUnavailable, TransientError
from services.retrying_fetcher import RetryingFetcher
from tests.helpers.stub_providers import FakeClock, StubProvider, usd_table


def _resolver(fetchers: list[RetryingFetcher], clock: FakeClock, **kwargs: float) -> CrossRateResolver:
    return CrossRateResolver(fetchers, clock=clock.monotonic, **kwargs)


def test_bridges_through_usd_rate_table(make_fetcher: Callable[..., RetryingFetcher], clock: FakeClock) -> None:
    provider = StubProvider(spot={"BASE-USD": Ok(10.0)}, tables={"USD": usd_table(QUOTE=600.0)})

    resolved = _resolver([make_fetcher(provider)], clock).resolve(normalize("BASE-QUOTE"))

    assert resolved.price == pytest.approx(6000.0)
    assert resolved.derivation == Derivation.CROSS
    assert resolved.source == "stub"


def test_falls_back_to_inverted_quote_leg(make_fetcher: Callable[..., RetryingFetcher], clock: FakeClock) -> None:
    provider = StubProvider(
        spot={"BASE-USD": Ok(10.0), "QUOTE-USD": Ok(0.002)},
        tables={"USD": usd_table(EUR=0.9)},
    )

    resolved = _resolver([make_fetcher(provider)], clock).resolve(normalize("BASE-QUOTE"))

    assert resolved.price == pytest.approx(5000.0)
    assert resolved.derivation == Derivation.INVERTED
    assert provider.calls_for("BASE-USD") == 1


def test_falls_back_to_reverse_pair(make_fetcher: Callable[..., RetryingFetcher], clock: FakeClock) -> None:
    provider = StubProvider(spot={"XOF-ABC": Ok(0.004)})

    resolved = _resolver([make_fetcher(provider)], clock).resolve(normalize("ABC-XOF"))

    assert resolved.price == pytest.approx(250.0)
    assert resolved.derivation == Derivation.INVERTED


def test_base_equal_to_bridge_needs_only_the_table(
    make_fetcher: Callable[..., RetryingFetcher], clock: FakeClock
) -> None:
    provider = StubProvider(tables={"USD": usd_table(XOF=600.0)})

    resolved = _resolver([make_fetcher(provider)], clock).resolve(normalize("USD-XOF"))

    assert resolved.price == pytest.approx(600.0)
    assert provider.spot_calls == []


def test_legs_use_next_provider_when_first_fails(
    make_fetcher: Callable[..., RetryingFetcher], clock: FakeClock
) -> None:
    flaky = StubProvider(name="flaky", spot={"BASE-USD": TransientError("down")})
    backup = StubProvider(name="backup", spot={"BASE-USD": Ok(10.0)}, tables={"USD": usd_table(QUOTE=600.0)})

    resolved = _resolver([make_fetcher(flaky, max_attempts=2), make_fetcher(backup)], clock).resolve(
        normalize("BASE-QUOTE")
    )

    assert resolved.price == pytest.approx(6000.0)
    assert resolved.source == "backup"


def test_mixed_provider_legs_report_both_sources(
    make_fetcher: Callable[..., RetryingFetcher], clock: FakeClock
) -> None:
    spot_only = StubProvider(name="spot", spot={"BASE-USD": Ok(10.0)})
    tables_only = StubProvider(name="tables", tables={"USD": usd_table(QUOTE=600.0)})

    resolved = _resolver([make_fetcher(spot_only), make_fetcher(tables_only)], clock).resolve(
        normalize("BASE-QUOTE")
    )

    assert resolved.source == "spot+tables"


def test_raises_price_unavailable_when_every_strategy_fails(
    make_fetcher: Callable[..., RetryingFetcher], clock: FakeClock
) -> None:
    provider = StubProvider(spot={"BASE-USD": TransientError("down")}, tables={"USD": usd_table(EUR=0.9)})

    with pytest.raises(PriceUnavailable) as excinfo:
        _resolver([make_fetcher(provider)], clock).resolve(normalize("BASE-QUOTE"))

    assert excinfo.value.pair == normalize("BASE-QUOTE")


def test_custom_bridge_currency(make_fetcher: Callable[..., RetryingFetcher], clock: FakeClock) -> None:
    provider = StubProvider(spot={"ABC-EUR": Ok(2.0)}, tables={"EUR": usd_table(XOF=655.957)})

    resolved = _resolver([make_fetcher(provider)], clock, bridge_currency="eur").resolve(normalize("ABC-XOF"))

    assert resolved.price == pytest.approx(1311.914)
    assert provider.table_calls == ["EUR"]


def test_leg_deadline_is_shared_across_providers(
    make_fetcher: Callable[..., RetryingFetcher], clock: FakeClock
) -> None:
    slow = StubProvider(name="slow", spot={"BASE-USD": TransientError("HTTP 503")})
    backup = StubProvider(name="backup", spot={"BASE-USD": Ok(10.0)}, tables={"USD": usd_table(QUOTE=600.0)})

    with pytest.raises(PriceUnavailable):
        _resolver([make_fetcher(slow), make_fetcher(backup)], clock, leg_timeout=1.5).resolve(
            normalize("BASE-QUOTE")
        )

    assert slow.calls_for("BASE-USD") == 3
    assert backup.calls_for("BASE-USD") == 0
