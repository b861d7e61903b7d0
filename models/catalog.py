"""Pydantic models for the read-only service catalog."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CatalogItem(BaseModel):
    """A sellable notary service.

    Catalog rows come from several sources and name the same concept
    differently, hence the optional ``slug``/``code``/``key``/``url_key``.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    name: str
    slug: Optional[str] = None
    code: Optional[str] = None
    key: Optional[str] = None
    url_key: Optional[str] = None
    base_price: float = 0.0
    price_usd: Optional[float] = None
    price_gbp: Optional[float] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    def price_override(self, currency: str) -> Optional[float]:
        """Return the per-currency list price when one is configured."""

        if currency == "USD":
            return self.price_usd
        if currency == "GBP":
            return self.price_gbp
        return None


class CatalogOption(BaseModel):
    """An add-on that can be chosen per uploaded document."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    name: str
    additional_price: float = 0.0
    applies_to_item_id: Optional[str] = None
    price_usd: Optional[float] = None
    price_gbp: Optional[float] = None

    @field_validator("id", "applies_to_item_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    def price_override(self, currency: str) -> Optional[float]:
        if currency == "USD":
            return self.price_usd
        if currency == "GBP":
            return self.price_gbp
        return None


class Catalog(BaseModel):
    """Items and options as loaded from the catalog service."""

    model_config = ConfigDict(extra="ignore")

    items: List[CatalogItem] = Field(default_factory=list)
    options: List[CatalogOption] = Field(default_factory=list)

    def item(self, item_id: str) -> Optional[CatalogItem]:
        return self._items_by_id().get(item_id)

    def option(self, option_id: str) -> Optional[CatalogOption]:
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    def options_for(self, item_id: str) -> List[CatalogOption]:
        """Return options that apply to ``item_id`` (or to every item)."""

        return [
            option
            for option in self.options
            if option.applies_to_item_id is None or option.applies_to_item_id == item_id
        ]

    def _items_by_id(self) -> Dict[str, CatalogItem]:
        return {item.id: item for item in self.items}


__all__ = ["Catalog", "CatalogItem", "CatalogOption"]
