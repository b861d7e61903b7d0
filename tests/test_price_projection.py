from __future__ import annotations

from typing import Callable

import pytest

from core.errors import LookupFailure
from pricing.projection import PriceProjector


class FakeRates:
    def __init__(self, rates: dict[str, float]) -> None:
        self.rates = rates
        self.calls: list[tuple[float, str, str]] = []
        self.on_convert: Callable[[], None] | None = None

    def convert(self, amount: float, source: str, target: str) -> float:
        self.calls.append((amount, source, target))
        if self.on_convert is not None:
            self.on_convert()
        if target not in self.rates:
            raise LookupFailure(f"no rate for {target}")
        return round(amount * self.rates[target], 2)


@pytest.fixture
def rates() -> FakeRates:
    return FakeRates({"USD": 1.2, "GBP": 0.8})


@pytest.fixture
def projector(rates: FakeRates, immediate_executor) -> PriceProjector:
    return PriceProjector(rates, currency="USD", executor=immediate_executor)


def test_source_currency_formats_without_lookup(rates: FakeRates, immediate_executor) -> None:
    projector = PriceProjector(rates, executor=immediate_executor)

    assert projector.format_sync(100) == "€100.00"
    assert projector.format_async(100).result() == "€100.00"
    assert rates.calls == []


def test_sync_format_shows_source_amount_until_a_rate_is_known(projector: PriceProjector) -> None:
    assert projector.format_sync(100) == "€100.00"
    assert not projector.is_authoritative(100)


def test_async_result_becomes_authoritative(projector: PriceProjector) -> None:
    assert projector.format_async(100).result() == "$120.00"

    assert projector.is_authoritative(100)
    assert projector.format_sync(100) == "$120.00"
    # Other amounts are estimated from the last authoritative rate.
    assert projector.format_sync(50) == "$60.00"
    assert projector.estimate(50, "USD") == 60.0


def test_authoritative_value_never_regresses(projector: PriceProjector, rates: FakeRates) -> None:
    projector.format_async(100).result()
    rates.rates["USD"] = 2.0

    assert projector.format_async(100).result() == "$120.00"
    assert projector.format_sync(100) == "$120.00"
    assert len(rates.calls) == 1


def test_currency_change_clears_cached_values(projector: PriceProjector) -> None:
    projector.format_async(100).result()

    assert projector.set_currency("GBP")
    assert not projector.set_currency("GBP")

    assert not projector.is_authoritative(100)
    assert projector.format_sync(100) == "€100.00"
    assert projector.format_async(100).result() == "£80.00"


def test_lookup_failure_resolves_with_fallback_estimate(rates: FakeRates, immediate_executor) -> None:
    projector = PriceProjector(rates, currency="CHF", executor=immediate_executor)

    assert projector.format_async(100).result() == "CHF 95.00"

    assert not projector.is_authoritative(100)
    assert projector.format_sync(100) == "CHF 95.00"
    assert projector.format_sync(100) == projector.format_async(100).result()
    assert projector.estimate(100, "CHF") == 95.0


def test_fallback_estimate_is_dropped_on_currency_change(rates: FakeRates, immediate_executor) -> None:
    projector = PriceProjector(rates, currency="CHF", executor=immediate_executor)
    projector.format_async(100).result()

    projector.set_currency("USD")
    projector.set_currency("CHF")

    assert projector.format_sync(100) == "€100.00"


def test_concurrent_requests_share_one_lookup(rates: FakeRates, deferred_executor) -> None:
    executor = deferred_executor
    projector = PriceProjector(rates, currency="USD", executor=executor)

    first = projector.format_async(100)
    second = projector.format_async(100)

    assert first is second
    executor.run_all()
    assert first.result() == "$120.00"
    assert len(rates.calls) == 1


def test_pending_lookup_is_cancelled_by_currency_change(rates: FakeRates, deferred_executor) -> None:
    executor = deferred_executor
    projector = PriceProjector(rates, currency="USD", executor=executor)
    future = projector.format_async(100)

    projector.set_currency("GBP")
    executor.run_all()

    assert future.cancelled()
    assert rates.calls == []
    assert not projector.is_authoritative(100)


def test_result_for_replaced_currency_is_not_cached(rates: FakeRates, immediate_executor) -> None:
    projector = PriceProjector(rates, currency="USD", executor=immediate_executor)
    rates.on_convert = lambda: projector.set_currency("GBP")

    assert projector.format_async(100).result() == "$120.00"

    assert projector.currency == "GBP"
    assert not projector.is_authoritative(100)
    assert projector.format_sync(100) == "€100.00"
