"""Apply guard decisions and run step transitions outside the UI layer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Mapping

from constants.keys import QueryParams, StorageKeys
from core.errors import HardPrerequisiteFailure
from integrations.accounts import AccountService
from integrations.checkout import CheckoutGateway
from models.form_state import FormState
from state.autosave import AutosavePayload, FunnelStatus
from state.background_sync import BackgroundSync
from state.form_store import CompletedSteps, FormStateContainer, rotate_session_id
from state.keyed_store import KeyedStore
from utils.i18n import (
    PAYMENT_CANCELLED_MESSAGE,
    PAYMENT_CONFIRMED_MESSAGE,
    UPLOADING_HINT,
    LocalizedText,
)
from utils.logging_context import log_context, set_session_id, set_wizard_step
from utils.telemetry import traced_operation
from wizard.events import EventDispatcher, EventType, WizardEvent
from wizard.guard import Arrival, ArrivalKind, GuardDecision, evaluate
from wizard.step_graph import StepDefinition, step_by_key, step_by_ordinal, terminal_step

logger = logging.getLogger(__name__)

SnapshotBuilder = Callable[[FormState, "FunnelStatus | None"], AutosavePayload]

INCOMPLETE_STEP_MESSAGE: LocalizedText = (
    "Veuillez compléter cette étape avant de continuer.",
    "Please complete this step before continuing.",
)
ACCOUNT_REQUIRED_MESSAGE: LocalizedText = (
    "Veuillez d'abord créer votre compte.",
    "Please create your account first.",
)

_SUCCESS_VALUES = frozenset({"success", "succeeded", "paid"})
_CANCEL_VALUES = frozenset({"cancel", "cancelled", "canceled"})


@dataclass(frozen=True)
class TransitionResult:
    """What happened when the user arrived, advanced or went back."""

    step: StepDefinition
    moved: bool = False
    error: LocalizedText | None = None
    notice: LocalizedText | None = None
    redirect_url: str | None = None
    decision: GuardDecision | None = None
    events: tuple[WizardEvent, ...] = ()


class NavigationController:
    def __init__(
        self,
        *,
        container: FormStateContainer,
        completed: CompletedSteps,
        store: KeyedStore,
        sync: BackgroundSync,
        accounts: AccountService,
        checkout: CheckoutGateway,
        dispatcher: EventDispatcher,
        snapshot_builder: SnapshotBuilder,
        uploads_pending: Callable[[], bool] = lambda: False,
    ) -> None:
        self._container = container
        self._completed = completed
        self._store = store
        self._sync = sync
        self._accounts = accounts
        self._checkout = checkout
        self._dispatcher = dispatcher
        self._build_snapshot = snapshot_builder
        self._uploads_pending = uploads_pending
        self._current = 1
        self._summary_recorded = False

    @property
    def current_step(self) -> StepDefinition:
        return step_by_ordinal(self._current)

    def arrive(
        self,
        step_key: str | None,
        query: Mapping[str, str | None] | None = None,
        *,
        deep_link: bool = False,
    ) -> TransitionResult:
        """Evaluate the guard for a requested step and apply its decision."""

        query = query or {}
        requested = step_by_key(step_key)
        target = requested.ordinal if requested else (self._current if step_key is None else 0)
        kind = self._arrival_kind(query, deep_link=deep_link)
        decision = evaluate(Arrival(target, kind), self._container.get(), self._completed.snapshot())
        events: list[WizardEvent] = []
        notice: LocalizedText | None = None

        if decision.clear_progress:
            self._consume_checkout_return(query)
            record_id = self._sync.force_sync(FunnelStatus.PAYMENT_COMPLETED)
            events.append(
                self._event(
                    EventType.PAYMENT_COMPLETED,
                    {"checkout_ref": self._checkout_ref(query), "record_id": record_id},
                )
            )
            self._clear_draft()
            notice = PAYMENT_CONFIRMED_MESSAGE
        elif decision.rehydrate:
            self._consume_checkout_return(query)
            self._container.rehydrate()
            self._completed.load()
            events.append(self._event(EventType.PAYMENT_CANCELLED))
            notice = PAYMENT_CANCELLED_MESSAGE
            decision = evaluate(Arrival(target, ArrivalKind.ROUTE), self._container.get(), self._completed.snapshot())

        if decision.backfill:
            logger.info("Backfilling completed steps %s", sorted(decision.backfill))
            self._completed.backfill(decision.backfill)
        if decision.is_redirect:
            logger.info("Redirecting to step %s (%s)", decision.target, decision.reason)
        self._move_to(decision.target)
        if self._current == terminal_step().ordinal and not self._summary_recorded:
            self._summary_recorded = True
            self._sync.force_sync(FunnelStatus.SUMMARY_VIEWED)
        return self._finish(
            TransitionResult(
                self.current_step,
                moved=decision.is_redirect,
                notice=notice,
                decision=decision,
                events=tuple(events),
            )
        )

    def advance(self) -> TransitionResult:
        """Complete the current step and move forward.

        Only account creation failures stop a valid step from advancing; the
        error is returned for display and the user stays on the step.
        """

        step = self.current_step
        if step.ordinal == terminal_step().ordinal:
            return TransitionResult(step)
        if step.ordinal == 2 and self._uploads_pending():
            return TransitionResult(step, error=UPLOADING_HINT)
        state = self._container.get()
        if not step.is_complete(state):
            return TransitionResult(step, error=INCOMPLETE_STEP_MESSAGE)

        events: list[WizardEvent] = []
        with log_context(wizard_step=step.key):
            if self._completed.mark(step.ordinal):
                if step.ordinal == 1:
                    events.append(self._event(EventType.FORM_STARTED, {"selection": sorted(state.selection)}))
                events.append(self._event(EventType.STEP_COMPLETED, {"step": step.key}))
            record_id = self._sync.force_sync(step.completion_status)

            if step.requires_account and not state.contact.authenticated:
                try:
                    with traced_operation("account-creation", {"step": step.key}):
                        account = self._accounts.ensure_client(state.contact, state.contact.password, record_id)
                except HardPrerequisiteFailure as exc:
                    logger.warning("Account creation failed: %s", exc)
                    return self._finish(TransitionResult(step, error=exc.user_message, events=tuple(events)))
                self._container.set(
                    {"contact": {"authenticated": True, "password": "", "password_confirmation": ""}}
                )
                events.append(self._event(EventType.ACCOUNT_CREATED, {"client_id": account.client_id}))

        self._move_to(step.ordinal + 1)
        return self._finish(TransitionResult(self.current_step, moved=True, events=tuple(events)))

    def go_back(self) -> TransitionResult:
        if self._current <= 1:
            return TransitionResult(self.current_step)
        return self.go_to(step_by_ordinal(self._current - 1).key)

    def go_to(self, step_key: str) -> TransitionResult:
        return self.arrive(step_key)

    def start_over(self) -> TransitionResult:
        """Abandon the draft and restart at step 1 with a new session id."""

        events = [self._event(EventType.FORM_ABANDONED, {"step": self.current_step.key})]
        self._clear_draft()
        self._move_to(1)
        return self._finish(TransitionResult(self.current_step, moved=True, events=tuple(events)))

    def begin_checkout(self, *, success_url: str, cancel_url: str) -> TransitionResult:
        """Create a checkout session for the summary step.

        Returns the provider URL in ``redirect_url``; failures stay on the
        summary with a retryable error.
        """

        step = self.current_step
        state = self._container.get()
        if step.ordinal != terminal_step().ordinal or not step.is_complete(state):
            return TransitionResult(step, error=INCOMPLETE_STEP_MESSAGE)
        if not state.contact.authenticated:
            self._move_to(4)
            return self._finish(TransitionResult(self.current_step, moved=True, error=ACCOUNT_REQUIRED_MESSAGE))

        with log_context(operation="checkout"), traced_operation("checkout", {"step": step.key}):
            record_id = self._sync.force_sync(FunnelStatus.PAYMENT_PENDING)
            snapshot = self._build_snapshot(state, FunnelStatus.PAYMENT_PENDING)
            if record_id:
                snapshot["record_id"] = record_id
            try:
                session = self._checkout.create_session(snapshot, success_url=success_url, cancel_url=cancel_url)
            except HardPrerequisiteFailure as exc:
                logger.warning("Checkout could not start: %s", exc)
                return TransitionResult(step, error=exc.user_message)
        event = self._event(EventType.PAYMENT_INITIATED, {"checkout_ref": session.checkout_ref, "record_id": record_id})
        return self._finish(TransitionResult(step, redirect_url=session.redirect_url, events=(event,)))

    def _arrival_kind(self, query: Mapping[str, str | None], *, deep_link: bool) -> ArrivalKind:
        status = (query.get(QueryParams.CHECKOUT) or "").strip().lower()
        if status in _SUCCESS_VALUES or status in _CANCEL_VALUES:
            if not self._is_fresh_checkout_return(query):
                logger.debug("Ignoring already handled checkout return")
                return ArrivalKind.ROUTE
            return ArrivalKind.CHECKOUT_SUCCESS if status in _SUCCESS_VALUES else ArrivalKind.CHECKOUT_CANCEL
        if deep_link or query.get(QueryParams.SERVICE):
            return ArrivalKind.DEEP_LINK
        return ArrivalKind.ROUTE

    @staticmethod
    def _checkout_ref(query: Mapping[str, str | None]) -> str:
        return (query.get(QueryParams.CHECKOUT_SESSION) or "").strip()

    def _return_marker(self, query: Mapping[str, str | None]) -> str:
        status = (query.get(QueryParams.CHECKOUT) or "").strip().lower()
        return f"{status}:{self._checkout_ref(query)}"

    def _is_fresh_checkout_return(self, query: Mapping[str, str | None]) -> bool:
        if not self._checkout_ref(query):
            return True
        return self._store.read(StorageKeys.LAST_CHECKOUT_RETURN) != self._return_marker(query)

    def _consume_checkout_return(self, query: Mapping[str, str | None]) -> None:
        if self._checkout_ref(query):
            self._store.write(StorageKeys.LAST_CHECKOUT_RETURN, self._return_marker(query))

    def _clear_draft(self) -> None:
        currency = self._container.get().commerce.currency_code
        self._sync.forget_record()
        session_id = rotate_session_id(self._store)
        self._container.reset(session_id=session_id, currency_code=currency)
        self._completed.clear()
        self._summary_recorded = False
        set_session_id(session_id)

    def _move_to(self, ordinal: int) -> None:
        self._current = ordinal
        set_wizard_step(self.current_step.key)

    def _event(self, event_type: EventType, payload: Mapping[str, object] | None = None) -> WizardEvent:
        return WizardEvent(event_type, self._container.get().meta.session_id, dict(payload or {}))

    def _finish(self, result: TransitionResult) -> TransitionResult:
        if result.events:
            self._dispatcher.drain(result.events)
        return result


__all__ = ["NavigationController", "TransitionResult"]
