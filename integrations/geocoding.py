"""Address and time-zone lookup client."""

from __future__ import annotations

import logging
from typing import Any, MutableMapping, Optional, Protocol

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config import GEOCODER_API_KEY, GEOCODER_URL, HTTP_TIMEOUT_SECONDS
from core.errors import LookupFailure
from utils.circuit_breaker import CircuitBreaker, CircuitOpenError
from utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class AddressLookupResult(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    formatted_address: str = ""
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = Field(default=None, alias="lat")
    longitude: Optional[float] = Field(default=None, alias="lon")
    time_zone: Optional[str] = Field(default=None, alias="iana_time_zone_id")


class AddressLookup(Protocol):
    def lookup(
        self, *, free_text: str | None = None, lat: float | None = None, lon: float | None = None
    ) -> AddressLookupResult: ...


class AddressLookupClient:
    """HTTP geocoder guarded by a circuit breaker."""

    def __init__(
        self,
        base_url: str = GEOCODER_URL,
        *,
        api_key: str = GEOCODER_API_KEY,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        breaker_store: MutableMapping[str, Any] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._session = session or requests.Session()
        self._breaker = CircuitBreaker("geocoder", store=breaker_store, failure_threshold=3, recovery_timeout=60)

    def lookup(
        self, *, free_text: str | None = None, lat: float | None = None, lon: float | None = None
    ) -> AddressLookupResult:
        if not self.base_url:
            raise LookupFailure("geocoder not configured")
        params: dict[str, Any] = {"key": self._api_key} if self._api_key else {}
        if free_text and free_text.strip():
            params["q"] = free_text.strip()
        elif lat is not None and lon is not None:
            params.update({"lat": lat, "lon": lon})
        else:
            raise LookupFailure("lookup needs an address or coordinates")
        try:
            body = self._breaker.call(lambda: self._fetch(params))
            return AddressLookupResult.model_validate(body)
        except CircuitOpenError as exc:
            raise LookupFailure(str(exc)) from exc
        except (requests.RequestException, ValueError, ValidationError) as exc:
            logger.info("Address lookup failed: %s", exc)
            raise LookupFailure(f"address lookup failed: {exc}") from exc

    @retry_with_backoff(max_tries=2, max_time=5)
    def _fetch(self, params: dict[str, Any]) -> dict:
        response = self._session.get(f"{self.base_url}/lookup", params=params, timeout=self._timeout)
        response.raise_for_status()
        body = response.json()
        if isinstance(body, dict) and isinstance(body.get("result"), dict):
            body = body["result"]
        if not isinstance(body, dict):
            raise ValueError("unexpected geocoder payload")
        return body


class NullAddressLookup:
    """Lookup that always fails soft; the user fills the address manually."""

    def lookup(
        self, *, free_text: str | None = None, lat: float | None = None, lon: float | None = None
    ) -> AddressLookupResult:
        raise LookupFailure("address lookup disabled")


__all__ = [
    "AddressLookup",
    "AddressLookupClient",
    "AddressLookupResult",
    "NullAddressLookup",
]
