"""Composition root wiring one draft's store, state owner and services.

A :class:`WizardSession` lives in ``st.session_state`` for the lifetime of a
browser tab. Everything that mutates the draft receives the same
:class:`FormStateContainer`, so there is exactly one owner of the state.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from config import (
    AUTOSAVE_QUIET_PERIOD_SECONDS,
    DEFAULT_CURRENCY,
    FX_API_URL,
    GEOCODER_URL,
    LOOKUP_WORKERS,
    STORAGE_DIR,
    USE_MEMORY_STORAGE,
    remote_backends_enabled,
)
from constants.keys import StorageKeys
from core.errors import LookupFailure, StorageFailure
from integrations.accounts import AccountService, HttpAccountService, InMemoryAccountService
from integrations.catalog import CatalogSource, HttpCatalogSource, StaticCatalogSource
from integrations.checkout import CheckoutGateway, HttpCheckoutGateway, InMemoryCheckoutGateway
from integrations.currency_rates import HttpRateProvider, RateProvider, StaticRateProvider
from integrations.geocoding import AddressLookup, AddressLookupClient, NullAddressLookup
from integrations.http import ApiClient
from integrations.remote_record import HttpRecordBackend, InMemoryRecordBackend, RecordBackend, RemoteRecordClient
from integrations.storage import DocumentStorage, HttpDocumentStorage, InMemoryDocumentStorage
from models.catalog import Catalog
from models.form_state import FormState
from pricing.currency import normalize_currency_code
from pricing.projection import PriceProjector
from pricing.totals import PriceBreakdown, calculate_total
from state.autosave import AutosavePayload, FunnelStatus, build_snapshot
from state.background_sync import BackgroundSync, TimerFactory
from state.form_store import CompletedSteps, FormStateContainer, ensure_session_id
from state.keyed_store import FileMedium, KeyedStore, MemoryMedium
from utils.logging_context import set_session_id
from wizard.address import AddressAutofill
from wizard.documents import DocumentUploads
from wizard.events import EventDispatcher, EventType, WizardEvent, log_event
from wizard.navigation_controller import NavigationController
from wizard.params import ExternalParameterResolver, ResolverOutcome
from wizard.step_graph import step_by_ordinal

logger = logging.getLogger(__name__)

_DRAFT_ID = re.compile(r"^[A-Za-z0-9_-]{8,64}$")


def new_draft_id() -> str:
    return uuid.uuid4().hex


def is_valid_draft_id(value: str | None) -> bool:
    return bool(value) and bool(_DRAFT_ID.match(value or ""))


@dataclass
class WizardServices:
    """External collaborators of a session; swapped for fakes in tests."""

    catalog: CatalogSource
    rates: RateProvider
    geocoder: AddressLookup
    storage: DocumentStorage
    records: RecordBackend
    accounts: AccountService
    checkout: CheckoutGateway


def default_services() -> WizardServices:
    """Return HTTP clients when an intake API is configured, in-memory ones otherwise."""

    geocoder: AddressLookup = AddressLookupClient() if GEOCODER_URL else NullAddressLookup()
    if not remote_backends_enabled():
        logger.info("No intake API configured; using in-memory backends")
        rates: RateProvider = HttpRateProvider(ApiClient(FX_API_URL)) if FX_API_URL else StaticRateProvider()
        return WizardServices(
            catalog=StaticCatalogSource(),
            rates=rates,
            geocoder=geocoder,
            storage=InMemoryDocumentStorage(),
            records=InMemoryRecordBackend(),
            accounts=InMemoryAccountService(),
            checkout=InMemoryCheckoutGateway(),
        )
    api = ApiClient()
    return WizardServices(
        catalog=HttpCatalogSource(api),
        rates=HttpRateProvider(ApiClient(FX_API_URL) if FX_API_URL else api),
        geocoder=geocoder,
        storage=HttpDocumentStorage(api),
        records=HttpRecordBackend(api),
        accounts=HttpAccountService(api),
        checkout=HttpCheckoutGateway(api),
    )


def funnel_from_completed(completed: frozenset[int]) -> FunnelStatus:
    """Return the funnel status reached by the furthest completed step."""

    reached = FunnelStatus.STARTED
    for ordinal in completed:
        try:
            status = step_by_ordinal(ordinal).completion_status
        except KeyError:
            continue
        if status.rank > reached.rank:
            reached = status
    return reached


class WizardSession:
    def __init__(
        self,
        store: KeyedStore,
        services: WizardServices,
        *,
        executor: Executor | None = None,
        upload_executor: Executor | None = None,
        timer_factory: TimerFactory = threading.Timer,
        quiet_period: float | None = None,
        draft_id: str = "",
    ) -> None:
        self.draft_id = draft_id
        self.store = store
        self.services = services
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=LOOKUP_WORKERS, thread_name_prefix="wizard")
        self._catalog_lock = threading.Lock()
        self._catalog: Catalog | None = None
        self._catalog_future: Future[Catalog] | None = None

        self.container = FormStateContainer(store)
        self.completed = CompletedSteps(store)
        state = self.container.hydrate()
        self.completed.load()
        session_id = ensure_session_id(store)
        if state.meta.session_id != session_id:
            self.container.set({"meta": {"session_id": session_id}})
        set_session_id(session_id)
        self._restore_currency_preference()

        self.dispatcher = EventDispatcher()
        self.dispatcher.register(log_event)
        self.resolver = ExternalParameterResolver(self.container, self.completed, store)
        self.projector = PriceProjector(
            services.rates,
            currency=self.container.get().commerce.currency_code,
            executor=executor,
        )
        self.uploads = DocumentUploads(self.container, services.storage, executor=upload_executor)
        self.autofill = AddressAutofill(self.container, services.geocoder, executor=executor)
        self.sync = BackgroundSync(
            self.container,
            RemoteRecordClient(services.records),
            self.build_snapshot,
            quiet_period=AUTOSAVE_QUIET_PERIOD_SECONDS if quiet_period is None else quiet_period,
            timer_factory=timer_factory,
        )
        self.controller = NavigationController(
            container=self.container,
            completed=self.completed,
            store=store,
            sync=self.sync,
            accounts=services.accounts,
            checkout=services.checkout,
            dispatcher=self.dispatcher,
            snapshot_builder=self.build_snapshot,
            uploads_pending=self.uploads.is_uploading,
        )
        self._unsubscribe_currency = self.container.subscribe(self._follow_currency)
        self.sync.attach()
        self.load_catalog()

    @property
    def state(self) -> FormState:
        return self.container.get()

    @property
    def storage_failure(self) -> StorageFailure | None:
        return self.store.last_failure

    def load_catalog(self) -> Future[Catalog]:
        """Start loading the catalog in the background (once)."""

        with self._catalog_lock:
            future = self._catalog_future
            if future is None or (future.done() and (future.cancelled() or future.exception() is not None)):
                future = self._catalog_future = self._executor.submit(self._load_catalog)
            return future

    def catalog(self, *, timeout: float | None = 0) -> Catalog | None:
        """Return the catalog, waiting at most ``timeout`` seconds for it."""

        if self._catalog is not None:
            return self._catalog
        future = self.load_catalog()
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            return None
        except LookupFailure as exc:
            logger.warning("Catalog unavailable: %s", exc)
            return None

    def apply_query(self, query: Mapping[str, str | None], *, timeout: float | None = 0) -> ResolverOutcome:
        """Apply URL parameters; a pending outcome means the catalog is still loading."""

        outcome = self.resolver.apply_query(query, self.catalog(timeout=timeout))
        if outcome.applied:
            self.dispatcher.drain(
                [
                    WizardEvent(
                        EventType.SERVICES_PRESELECTED,
                        self.container.get().meta.session_id,
                        {"selection": sorted(outcome.selection), "unmatched": list(outcome.unmatched)},
                    )
                ]
            )
        return outcome

    def set_currency(self, currency: str) -> str | None:
        code = normalize_currency_code(currency)
        if code is None:
            logger.warning("Ignoring unsupported currency %r", currency)
            return None
        self.container.set({"commerce": {"currency_code": code}})
        self.store.write(StorageKeys.CURRENCY_PREFERENCE, code)
        return code

    def price_breakdown(self, state: FormState | None = None) -> PriceBreakdown | None:
        catalog = self.catalog()
        if catalog is None:
            return None
        state = state or self.container.get()
        return calculate_total(state, catalog, convert=self.projector.estimate)

    def build_snapshot(self, state: FormState, funnel_status: FunnelStatus | None) -> AutosavePayload:
        completed = self.completed.snapshot()
        breakdown = self.price_breakdown(state)
        controller = getattr(self, "controller", None)
        return build_snapshot(
            state,
            completed_steps=completed,
            current_step=controller.current_step.key if controller is not None else None,
            total_price=breakdown.total if breakdown is not None else None,
            funnel_status=funnel_status or funnel_from_completed(completed),
        )

    def close(self) -> None:
        """Cancel the autosave timer and stop worker pools."""

        self._unsubscribe_currency()
        self.sync.close()
        self.uploads.close()
        self.autofill.close()
        self.projector.close()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        logger.debug("Wizard session closed")

    def _load_catalog(self) -> Catalog:
        catalog = self.services.catalog.load()
        self._catalog = catalog
        return catalog

    def _restore_currency_preference(self) -> None:
        state = self.container.get()
        preferred = normalize_currency_code(self.store.read(StorageKeys.CURRENCY_PREFERENCE))
        if preferred is None:
            # Only a fresh draft picks up the configured default.
            if state.has_real_progress():
                return
            preferred = normalize_currency_code(DEFAULT_CURRENCY)
        if preferred is not None and preferred != state.commerce.currency_code:
            self.container.set({"commerce": {"currency_code": preferred}})

    def _follow_currency(self, state: FormState) -> None:
        self.projector.set_currency(state.commerce.currency_code)


def build_session(
    draft_id: str,
    *,
    services: WizardServices | None = None,
    storage_dir: str | Path = STORAGE_DIR,
    use_memory: bool = USE_MEMORY_STORAGE,
) -> WizardSession:
    """Open the draft ``draft_id`` with its local store."""

    if not is_valid_draft_id(draft_id):
        raise ValueError(f"invalid draft id: {draft_id!r}")
    medium = MemoryMedium() if use_memory else FileMedium(Path(storage_dir) / draft_id)
    session = WizardSession(KeyedStore(medium), services or default_services(), draft_id=draft_id)
    logger.info("Opened draft %s", draft_id)
    return session


__all__ = [
    "WizardServices",
    "WizardSession",
    "build_session",
    "default_services",
    "funnel_from_completed",
    "is_valid_draft_id",
    "new_draft_id",
]
