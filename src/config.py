from __future__ import annotations

from functools import cache
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from services.coingecko_source import DEFAULT_COIN_IDS


class AppSettings(BaseSettings):
    # Providers, in priority order
    providers: Annotated[list[str], NoDecode] = ["coinbase", "coingecko"]
    coinbase_base_url: str = "https://api.coinbase.com/v2"
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: str | None = None
    coingecko_coin_ids: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_COIN_IDS))

    # Outbound calls
    request_timeout_seconds: float = Field(default=8.0, gt=0)
    connect_retries: int = Field(default=1, ge=0)
    max_concurrent_requests: int = Field(default=6, ge=1)
    worker_threads: int = Field(default=16, ge=1)
    max_retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=0.3, ge=0)
    rate_limit_default_delay_seconds: float = Field(default=2.0, ge=0)
    rate_limit_max_wait_seconds: float = Field(default=60.0, ge=0)
    leg_timeout_seconds: float = Field(default=20.0, gt=0)
    quote_timeout_seconds: float = Field(default=30.0, gt=0)

    # Pricing
    buy_discount: float = Field(default=0.005, ge=0, lt=1)
    sell_markup: float = Field(default=0.03, ge=0)
    bridge_currency: str = "USD"
    price_decimals: int = Field(default=6, ge=0)

    # Caching and prewarming
    cache_ttl_seconds: float = Field(default=30.0, gt=0)
    refresh_interval_seconds: float = Field(default=30.0, gt=0)
    prewarm_pause_seconds: float = Field(default=0.12, ge=0)
    prewarm_pairs: Annotated[list[str], NoDecode] = []

    model_config = SettingsConfigDict(
        env_prefix="QUOTES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("providers", "prewarm_pairs", mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("providers")
    @classmethod
    def _lower_providers(cls, value: list[str]) -> list[str]:
        if not value:
            msg = "at least one provider must be configured"
            raise ValueError(msg)
        return [name.lower() for name in value]

    @field_validator("bridge_currency")
    @classmethod
    def _upper_bridge(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            msg = "bridge_currency must not be empty"
            raise ValueError(msg)
        return value


@cache
def config() -> AppSettings:
    return AppSettings()
