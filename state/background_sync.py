"""Replicate the draft to the remote record.

Two entry points share one serialized push path:

* ``schedule`` (wired to container changes) restarts a quiet-period timer;
  when it fires, the draft is read *at fire time* and pushed if it shows real
  progress.
* ``force_sync`` cancels the timer and pushes immediately; the navigation
  controller calls it before leaving a step.

Failures are logged and never raised. There is no retry loop: the next
change or the next forced sync pushes again.
"""

from __future__ import annotations

import logging
import threading
from functools import partial
from typing import Callable, Protocol

from config import AUTOSAVE_QUIET_PERIOD_SECONDS
from core.errors import SyncFailure
from integrations.remote_record import RemoteRecordClient
from models.form_state import FormState
from state.autosave import AutosavePayload, FunnelStatus
from state.form_store import FormStateContainer
from utils.logging_context import log_context
from utils.telemetry import traced_operation

logger = logging.getLogger(__name__)

SnapshotBuilder = Callable[[FormState, "FunnelStatus | None"], AutosavePayload]


class TimerLike(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerLike]


class BackgroundSync:
    def __init__(
        self,
        container: FormStateContainer,
        client: RemoteRecordClient,
        snapshot_builder: SnapshotBuilder,
        *,
        quiet_period: float = AUTOSAVE_QUIET_PERIOD_SECONDS,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._container = container
        self._client = client
        self._build_snapshot = snapshot_builder
        self._quiet_period = quiet_period
        self._timer_factory = timer_factory
        self._timer: TimerLike | None = None
        self._timer_token = 0
        self._timer_lock = threading.Lock()
        self._push_lock = threading.Lock()
        self._record_id: str | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._closed = False

    @property
    def record_id(self) -> str | None:
        return self._record_id

    @property
    def pending(self) -> bool:
        with self._timer_lock:
            return self._timer is not None

    def attach(self) -> None:
        """Schedule an autosave after every committed change."""

        if self._unsubscribe is None:
            self._unsubscribe = self._container.subscribe(lambda _state: self.schedule())

    def schedule(self) -> None:
        with self._timer_lock:
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer_token += 1
            timer = self._timer_factory(self._quiet_period, partial(self._fire, self._timer_token))
            if isinstance(timer, threading.Thread):
                timer.daemon = True
            self._timer = timer
            timer.start()

    def cancel_pending(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def force_sync(self, funnel_status: FunnelStatus | None = None) -> str | None:
        """Push the current draft now and return the record id (``None`` on failure)."""

        self.cancel_pending()
        state = self._container.get()
        if not state.has_real_progress():
            logger.debug("Force sync skipped: no progress yet")
            return self._record_id
        return self._push(state, operation="force-sync", funnel_status=funnel_status)

    def forget_record(self) -> None:
        """Drop the cached record id after the session id rotated."""

        self.cancel_pending()
        self._record_id = None

    def close(self) -> None:
        with self._timer_lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _fire(self, token: int) -> None:
        with self._timer_lock:
            # A superseded or cancelled timer that still fired must not touch the live one.
            if token != self._timer_token or self._timer is None:
                return
            self._timer = None
            if self._closed:
                return
        state = self._container.get()
        if not state.has_real_progress():
            return
        self._push(state, operation="autosave", funnel_status=None)

    def _push(self, state: FormState, *, operation: str, funnel_status: FunnelStatus | None) -> str | None:
        session_id = state.meta.session_id
        with self._push_lock, log_context(session_id=session_id, operation=operation):
            with traced_operation(operation, {"session_id": session_id}):
                snapshot = self._build_snapshot(state, funnel_status)
                try:
                    record_id = self._client.upsert(session_id, snapshot)
                except SyncFailure as exc:
                    logger.warning("Draft sync failed: %s", exc)
                    return None
            self._record_id = record_id
            logger.info("Draft synced to record %s", record_id)
            return record_id


__all__ = ["BackgroundSync", "SnapshotBuilder", "TimerFactory", "TimerLike"]
