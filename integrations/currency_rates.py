"""Authoritative currency conversion lookups."""

from __future__ import annotations

import logging
from typing import Protocol

import requests

from core.errors import LookupFailure
from integrations.http import ApiClient
from pricing.currency import convert_with_fallback, round_amount
from utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class RateProvider(Protocol):
    def convert(self, amount: float, source: str, target: str) -> float: ...


class HttpRateProvider:
    """Call ``GET /convert?amount=..&from=..&to=..`` returning ``converted_amount``."""

    def __init__(self, api: ApiClient) -> None:
        self._api = api

    def convert(self, amount: float, source: str, target: str) -> float:
        if source == target:
            return amount
        try:
            body = self._fetch(amount, source, target)
            converted = float(body["converted_amount"])
        except (requests.RequestException, KeyError, TypeError, ValueError) as exc:
            raise LookupFailure(f"conversion {source}->{target} failed: {exc}") from exc
        return round_amount(converted, target)

    @retry_with_backoff(max_tries=3, max_time=10)
    def _fetch(self, amount: float, source: str, target: str) -> dict:
        body = self._api.get("convert", params={"amount": amount, "from": source, "to": target})
        if not isinstance(body, dict):
            raise ValueError("unexpected conversion payload")
        return body


class StaticRateProvider:
    """Convert with the built-in fallback table."""

    def convert(self, amount: float, source: str, target: str) -> float:
        return convert_with_fallback(amount, target, source=source)


__all__ = ["HttpRateProvider", "RateProvider", "StaticRateProvider"]
