"""Display prices in the selected currency without flicker or regression.

``format_sync`` never blocks: it returns the authoritative string when one is
cached, otherwise an estimate from the last authoritative rate, otherwise the
amount in the source currency. ``format_async`` fetches the authoritative
conversion on a worker thread. Once an authoritative value exists for an
``(amount, currency)`` pair, ``format_sync`` keeps returning it until the
currency changes.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor

from config import LOOKUP_WORKERS
from core.errors import LookupFailure
from integrations.currency_rates import RateProvider
from pricing.currency import SOURCE_CURRENCY, convert_with_fallback, format_amount, round_amount

logger = logging.getLogger(__name__)

CacheKey = tuple[float, str]


def _resolved(value: str) -> Future[str]:
    future: Future[str] = Future()
    future.set_result(value)
    return future


class PriceProjector:
    def __init__(
        self,
        provider: RateProvider,
        *,
        currency: str = SOURCE_CURRENCY,
        source_currency: str = SOURCE_CURRENCY,
        executor: Executor | None = None,
    ) -> None:
        self._provider = provider
        self._source = source_currency
        self._currency = currency
        self._lock = threading.Lock()
        self._generation = 0
        self._authoritative: dict[CacheKey, str] = {}
        self._rates: dict[str, float] = {}
        self._estimates: dict[CacheKey, str] = {}
        self._pending: dict[CacheKey, Future[str]] = {}
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=LOOKUP_WORKERS, thread_name_prefix="fx")

    @property
    def currency(self) -> str:
        with self._lock:
            return self._currency

    def set_currency(self, currency: str) -> bool:
        """Switch the display currency; return ``False`` when unchanged."""

        with self._lock:
            if currency == self._currency:
                return False
            self._currency = currency
            self._generation += 1
            self._authoritative.clear()
            self._rates.clear()
            self._estimates.clear()
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            future.cancel()
        logger.debug("Display currency switched to %s", currency)
        return True

    def estimate(self, amount: float, currency: str) -> float:
        """Convert ``amount`` with the cached rate, or the static table."""

        if currency == self._source:
            return amount
        with self._lock:
            rate = self._rates.get(currency) if currency == self._currency else None
        if rate is not None:
            return round_amount(amount * rate, currency)
        return convert_with_fallback(amount, currency, source=self._source)

    def format_sync(self, amount: float) -> str:
        with self._lock:
            currency = self._currency
            if currency == self._source:
                return format_amount(amount, currency)
            cached = self._authoritative.get((amount, currency))
            if cached is not None:
                return cached
            rate = self._rates.get(currency)
            estimate = self._estimates.get((amount, currency))
        if rate is not None:
            return format_amount(amount * rate, currency)
        if estimate is not None:
            return estimate
        return format_amount(amount, self._source)

    def format_async(self, amount: float) -> Future[str]:
        with self._lock:
            currency = self._currency
            if currency == self._source:
                return _resolved(format_amount(amount, currency))
            key = (amount, currency)
            cached = self._authoritative.get(key)
            if cached is not None:
                return _resolved(cached)
            pending = self._pending.get(key)
            if pending is not None:
                return pending
            future: Future[str] = Future()
            self._pending[key] = future
            generation = self._generation
        self._executor.submit(self._run, future, amount, currency, generation)
        return future

    def is_authoritative(self, amount: float) -> bool:
        with self._lock:
            return (amount, self._currency) in self._authoritative

    def close(self) -> None:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            future.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _run(self, future: Future[str], amount: float, currency: str, generation: int) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(self._resolve(amount, currency, generation))
        except Exception as exc:
            with self._lock:
                if self._pending.get((amount, currency)) is future:
                    del self._pending[(amount, currency)]
            future.set_exception(exc)

    def _resolve(self, amount: float, currency: str, generation: int) -> str:
        key = (amount, currency)
        try:
            converted = self._provider.convert(amount, self._source, currency)
        except LookupFailure as exc:
            logger.info("Using fallback rate for %s: %s", currency, exc)
            text = format_amount(convert_with_fallback(amount, currency, source=self._source), currency)
            with self._lock:
                if generation == self._generation:
                    self._pending.pop(key, None)
                    self._estimates[key] = text
            return text
        text = format_amount(converted, currency)
        with self._lock:
            # Results for a currency that is no longer selected are not cached.
            if generation == self._generation:
                self._pending.pop(key, None)
                self._authoritative[key] = text
                if amount:
                    self._rates[currency] = converted / amount
        return text


__all__ = ["PriceProjector"]
