from typing import Callable, Generator, Sequence

import pytest

from domain.pricing import MarginPolicy
from services.price_service import PriceService
from services.retrying_fetcher import RetryingFetcher
from tests.helpers.stub_providers import FakeClock, RecordingSleep, StubProvider


@pytest.fixture(scope="function")
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="function")
def sleep(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock=clock)


@pytest.fixture(scope="function")
def make_fetcher(sleep: RecordingSleep, clock: FakeClock) -> Callable[..., RetryingFetcher]:
    def _make(provider: StubProvider, **kwargs: float) -> RetryingFetcher:
        options: dict = {"max_attempts": 3, "base_delay": 0.5, "sleep": sleep, "clock": clock.monotonic}
        options.update(kwargs)
        return RetryingFetcher(provider, **options)

    return _make


@pytest.fixture(scope="function")
def make_service(
    make_fetcher: Callable[..., RetryingFetcher], clock: FakeClock
) -> Generator[Callable[..., PriceService], None, None]:
    services: list[PriceService] = []

    def _make(providers: Sequence[StubProvider], **kwargs: object) -> PriceService:
        options: dict = {
            "margin": MarginPolicy(buy_discount=0.005, sell_markup=0.03),
            "clock": clock,
            "monotonic": clock.monotonic,
            "quote_timeout": 5.0,
        }
        options.update(kwargs)
        service = PriceService([make_fetcher(provider) for provider in providers], **options)
        services.append(service)
        return service

    yield _make
    for service in services:
        service.close()
