"""Read-only access to the service catalog."""

from __future__ import annotations

import logging
from typing import Protocol

import requests
from pydantic import ValidationError

from core.errors import LookupFailure
from integrations.http import ApiClient
from models.catalog import Catalog, CatalogItem, CatalogOption
from utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class CatalogSource(Protocol):
    def load(self) -> Catalog: ...


class HttpCatalogSource:
    """Load items and options from ``/catalog/items`` and ``/catalog/options``."""

    def __init__(self, api: ApiClient) -> None:
        self._api = api

    def load(self) -> Catalog:
        try:
            items = self._fetch("catalog/items")
            options = self._fetch("catalog/options")
            catalog = Catalog.model_validate({"items": items, "options": options})
        except (requests.RequestException, ValueError, ValidationError) as exc:
            raise LookupFailure(f"catalog unavailable: {exc}") from exc
        logger.info("Loaded catalog with %d items and %d options", len(catalog.items), len(catalog.options))
        return catalog

    @retry_with_backoff(max_tries=3)
    def _fetch(self, path: str) -> list:
        payload = self._api.get(path, params={"active": "true"})
        if isinstance(payload, dict):
            payload = payload.get("data", [])
        if not isinstance(payload, list):
            raise ValueError(f"unexpected {path} payload")
        return payload


class StaticCatalogSource:
    """Serve a fixed catalog; used when no intake API is configured."""

    def __init__(self, catalog: Catalog | None = None) -> None:
        self._catalog = catalog or DEFAULT_CATALOG

    def load(self) -> Catalog:
        return self._catalog


DEFAULT_CATALOG = Catalog(
    items=[
        CatalogItem(
            id="svc-signature",
            name="Notarization of Signature",
            slug="notarization-of-signature",
            code="SIG",
            base_price=59.0,
            price_usd=65.0,
            price_gbp=50.0,
        ),
        CatalogItem(
            id="svc-certified-copy",
            name="Certified True Copy",
            slug="certified-true-copy",
            code="CTC",
            base_price=39.0,
        ),
        CatalogItem(
            id="svc-apostille",
            name="Apostille",
            slug="apostille",
            url_key="apostille-hague",
            base_price=89.0,
        ),
        CatalogItem(
            id="svc-translation",
            name="Certified Translation",
            slug="certified-translation",
            base_price=75.0,
        ),
    ],
    options=[
        CatalogOption(id="opt-express", name="Express processing", additional_price=25.0),
        CatalogOption(
            id="opt-extra-copy",
            name="Additional certified copy",
            additional_price=10.0,
            applies_to_item_id="svc-certified-copy",
        ),
    ],
)


__all__ = ["CatalogSource", "DEFAULT_CATALOG", "HttpCatalogSource", "StaticCatalogSource"]
