from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any, Callable, MutableMapping, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class CircuitState(StrEnum):
    """Possible circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerState:
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    opened_at: float | None = None


class CircuitOpenError(RuntimeError):
    """Raised by :meth:`CircuitBreaker.call` while the circuit is open."""


class CircuitBreaker:
    """Stop calling a flaky lookup service after repeated failures.

    State lives in ``store`` (for example ``st.session_state``) when given so
    every rerun of the same browser session shares it; otherwise it is kept on
    the instance. A single probe is let through once ``recovery_timeout``
    seconds have passed.
    """

    def __init__(
        self,
        service_name: str,
        *,
        store: MutableMapping[str, Any] | None = None,
        failure_threshold: int = 3,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._store = store
        self._clock = clock or time.monotonic
        self._key = f"circuit_breaker.{service_name}"
        self._local = CircuitBreakerState()
        self._lock = threading.Lock()

    def allow_request(self) -> bool:
        with self._lock:
            state = self._load()
            if state.state is not CircuitState.OPEN:
                return True
            if state.opened_at is not None and self._clock() - state.opened_at >= self.recovery_timeout:
                self._save(replace(state, state=CircuitState.HALF_OPEN))
                logger.info("Circuit for %s half-open; probing", self.service_name)
                return True
            return False

    def record_failure(self) -> None:
        with self._lock:
            state = self._load()
            failures = state.failure_count + 1
            if state.state is CircuitState.HALF_OPEN or failures >= self.failure_threshold:
                if state.state is not CircuitState.OPEN:
                    logger.warning("Circuit for %s opened after %d failures", self.service_name, failures)
                self._save(CircuitBreakerState(CircuitState.OPEN, failures, self._clock()))
            else:
                self._save(replace(state, failure_count=failures))

    def record_success(self) -> None:
        with self._lock:
            self._save(CircuitBreakerState())

    def current_state(self) -> CircuitBreakerState:
        with self._lock:
            return replace(self._load())

    def call(self, func: Callable[[], T]) -> T:
        """Run ``func`` through the breaker, recording its outcome."""

        if not self.allow_request():
            raise CircuitOpenError(f"{self.service_name} is temporarily unavailable")
        try:
            result = func()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def _load(self) -> CircuitBreakerState:
        if self._store is None:
            return self._local
        raw = self._store.get(self._key)
        if not isinstance(raw, dict):
            return CircuitBreakerState()
        try:
            circuit_state = CircuitState(raw.get("state", CircuitState.CLOSED))
        except ValueError:
            circuit_state = CircuitState.CLOSED
        failures = raw.get("failure_count")
        opened_at = raw.get("opened_at")
        return CircuitBreakerState(
            state=circuit_state,
            failure_count=failures if isinstance(failures, int) else 0,
            opened_at=opened_at if isinstance(opened_at, (int, float)) else None,
        )

    def _save(self, state: CircuitBreakerState) -> None:
        if self._store is None:
            self._local = state
            return
        self._store[self._key] = {
            "state": state.state.value,
            "failure_count": state.failure_count,
            "opened_at": state.opened_at,
        }
