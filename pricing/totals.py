"""Order totals: per-document service price, chosen options and delivery."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Final

from models.catalog import Catalog, CatalogItem, CatalogOption
from models.form_state import DeliveryMethod, FormState
from pricing.currency import SOURCE_CURRENCY, convert_with_fallback, round_amount

POSTAL_DELIVERY_PRICE_EUR: Final[float] = 29.95

# (amount in EUR, target currency) -> amount in target currency
Converter = Callable[[float, str], float]


def _fallback_converter(amount: float, currency: str) -> float:
    return convert_with_fallback(amount, currency)


def item_price(item: CatalogItem, currency: str, convert: Converter = _fallback_converter) -> float:
    """Return the unit price of ``item`` in ``currency``.

    A per-currency list price wins; otherwise the EUR base price is converted.
    """

    override = item.price_override(currency)
    if override is not None:
        return override
    if currency == SOURCE_CURRENCY:
        return item.base_price
    return convert(item.base_price, currency)


def option_price(option: CatalogOption, currency: str, convert: Converter = _fallback_converter) -> float:
    override = option.price_override(currency)
    if override is not None:
        return override
    if currency == SOURCE_CURRENCY:
        return option.additional_price
    return convert(option.additional_price, currency)


def delivery_price(method: DeliveryMethod, currency: str, convert: Converter = _fallback_converter) -> float:
    if method is not DeliveryMethod.POSTAL:
        return 0.0
    if currency == SOURCE_CURRENCY:
        return POSTAL_DELIVERY_PRICE_EUR
    return convert(POSTAL_DELIVERY_PRICE_EUR, currency)


@dataclass(frozen=True)
class PriceLine:
    item_id: str
    name: str
    document_count: int
    unit_price: float
    options_total: float

    @property
    def subtotal(self) -> float:
        return self.document_count * self.unit_price + self.options_total


@dataclass(frozen=True)
class PriceBreakdown:
    currency: str
    lines: tuple[PriceLine, ...]
    delivery: float

    @property
    def total(self) -> float:
        return round_amount(sum(line.subtotal for line in self.lines) + self.delivery, self.currency)


def calculate_total(
    state: FormState,
    catalog: Catalog,
    currency: str | None = None,
    *,
    convert: Converter = _fallback_converter,
) -> PriceBreakdown:
    """Price the draft: documents x service price, plus options, plus delivery.

    Selected items missing from the catalog contribute nothing.
    """

    target = currency or state.commerce.currency_code
    lines: list[PriceLine] = []
    for item_id in sorted(state.selection):
        item = catalog.item(item_id)
        if item is None:
            continue
        documents = state.documents_by_selection.get(item_id, [])
        options_total = 0.0
        for document in documents:
            for option_id in sorted(document.chosen_option_ids):
                option = catalog.option(option_id)
                if option is not None:
                    options_total += option_price(option, target, convert)
        lines.append(
            PriceLine(
                item_id=item_id,
                name=item.name,
                document_count=len(documents),
                unit_price=item_price(item, target, convert),
                options_total=options_total,
            )
        )
    return PriceBreakdown(
        currency=target,
        lines=tuple(lines),
        delivery=delivery_price(state.delivery, target, convert),
    )


__all__ = [
    "POSTAL_DELIVERY_PRICE_EUR",
    "PriceBreakdown",
    "PriceLine",
    "calculate_total",
    "delivery_price",
    "item_price",
    "option_price",
]
