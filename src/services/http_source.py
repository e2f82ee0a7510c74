from __future__ import annotations

import logging
import math
from typing import Any

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.exceptions import InvalidHeader
from urllib3.util import Retry

from .price_types import ProviderFailure, RateLimited, TransientError, Unsupported

logger = logging.getLogger(__name__)


class JsonHttpSource:
    """Base for market-data clients speaking JSON over HTTP.

    ``_get_json`` never raises for provider trouble. It returns either the
    decoded payload or a failure tag: 404 is ``Unsupported``, 429 is
    ``RateLimited`` (with the ``Retry-After`` hint when present), anything
    else that goes wrong is a ``TransientError``. Retrying is left to the
    caller; the mounted adapter only retries failed connection attempts.
    """

    name = "http"

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float = 8.0,
        session: requests.Session | None = None,
        connect_retries: int = 1,
        headers: dict[str, str] | None = None,
    ) -> None:
        if not base_url:
            msg = "base_url must be provided"
            raise ValueError(msg)
        if timeout <= 0:
            msg = "timeout must be > 0"
            raise ValueError(msg)

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._session = session or requests.Session()

        if session is None:
            retries = Retry(
                total=None,
                connect=connect_retries,
                read=0,
                status=0,
                allowed_methods=frozenset({"GET"}),
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retries)
            self._session.mount("https://", adapter)
            self._session.mount("http://", adapter)

    def _get_json(self, path: str, *, params: dict[str, Any] | None = None) -> dict[str, Any] | ProviderFailure:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(
                "GET",
                url,
                params=params,
                timeout=self.timeout,
                headers=self._headers,
            )
        except requests.RequestException as exc:
            logger.warning("%s request to %s failed: %s", self.name, path, exc)
            return TransientError(f"{type(exc).__name__}: {exc}")

        if response.status_code == 404:
            return Unsupported(self._extract_error(response) or f"{path} not found")
        if response.status_code == 429:
            retry_after = self._parse_retry_after(response)
            logger.warning("%s rate-limited on %s (retry after %s)", self.name, path, retry_after)
            return RateLimited(retry_after=retry_after)
        if response.status_code >= 400:
            message = self._extract_error(response) or "request failed"
            return TransientError(f"HTTP {response.status_code}: {message}")

        try:
            payload = response.json()
        except ValueError:
            return TransientError(f"{self.name} returned invalid JSON")

        if not isinstance(payload, dict):
            return TransientError(f"{self.name} returned unexpected payload type {type(payload).__name__}")
        return payload

    @staticmethod
    def _parse_retry_after(response: Response) -> float | None:
        raw = response.headers.get("Retry-After")
        if not raw:
            return None
        try:
            return float(max(Retry().parse_retry_after(raw), 0))
        except InvalidHeader:
            return None

    @staticmethod
    def _extract_error(response: Response) -> str | None:
        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None

        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return errors[0].get("message")
        status = payload.get("status")
        if isinstance(status, dict) and status.get("error_message"):
            return status["error_message"]
        message = payload.get("error") or payload.get("message")
        return str(message) if message else None

    @staticmethod
    def _to_price(value: Any) -> float | None:
        try:
            price = float(value)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(price) or price <= 0:
            return None
        return price


__all__ = ["JsonHttpSource"]
