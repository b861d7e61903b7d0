from pathlib import Path
import sys
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from typing import Any, Callable

import streamlit as st

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from integrations.accounts import InMemoryAccountService  # noqa: E402
from integrations.catalog import StaticCatalogSource  # noqa: E402
from integrations.checkout import InMemoryCheckoutGateway  # noqa: E402
from integrations.currency_rates import StaticRateProvider  # noqa: E402
from integrations.geocoding import NullAddressLookup  # noqa: E402
from integrations.remote_record import InMemoryRecordBackend  # noqa: E402
from integrations.storage import InMemoryDocumentStorage  # noqa: E402
from state.keyed_store import KeyedStore, MemoryMedium  # noqa: E402


@dataclass
class _SessionDict(dict[str, object]):
    """Lightweight replacement for ``st.session_state`` during tests."""

    def clear(self) -> None:  # type: ignore[override]
        super().clear()


@pytest.fixture(autouse=True)
def _stub_streamlit_session_state(monkeypatch: pytest.MonkeyPatch) -> None:
    """Replace Streamlit's runtime-bound session state with a plain dictionary."""

    session_state = _SessionDict()
    monkeypatch.setattr(st, "session_state", session_state, raising=False)
    yield


class ImmediateExecutor(Executor):
    """Run submitted callables on the calling thread."""

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        if not future.set_running_or_notify_cancel():
            return future
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:  # noqa: BLE001 - mirrors ThreadPoolExecutor
            future.set_exception(exc)
        return future


class DeferredExecutor(Executor):
    """Queue submitted work until ``run_all`` is called."""

    def __init__(self) -> None:
        self.jobs: list[tuple[Callable[..., Any], tuple, dict, Future]] = []

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        self.jobs.append((fn, args, kwargs, future))
        return future

    def run_all(self) -> None:
        jobs, self.jobs = self.jobs, []
        for fn, args, kwargs, future in jobs:
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseException as exc:  # noqa: BLE001 - mirrors ThreadPoolExecutor
                future.set_exception(exc)


class ManualTimer:
    """Timer stand-in that only fires when the test says so."""

    def __init__(self, interval: float, function: Callable[[], None]) -> None:
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.function()


class ManualTimerFactory:
    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def __call__(self, interval: float, function: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> ManualTimer:
        return self.timers[-1]


@pytest.fixture
def store() -> KeyedStore:
    return KeyedStore(MemoryMedium())


@pytest.fixture
def immediate_executor() -> ImmediateExecutor:
    return ImmediateExecutor()


@pytest.fixture
def deferred_executor() -> DeferredExecutor:
    return DeferredExecutor()


@pytest.fixture
def timers() -> ManualTimerFactory:
    return ManualTimerFactory()


@pytest.fixture
def services():
    from wizard.session import WizardServices

    return WizardServices(
        catalog=StaticCatalogSource(),
        rates=StaticRateProvider(),
        geocoder=NullAddressLookup(),
        storage=InMemoryDocumentStorage(),
        records=InMemoryRecordBackend(),
        accounts=InMemoryAccountService(),
        checkout=InMemoryCheckoutGateway(),
    )


@pytest.fixture
def session(store: KeyedStore, services, immediate_executor: ImmediateExecutor, timers: ManualTimerFactory):
    from wizard.session import WizardSession

    wizard_session = WizardSession(
        store,
        services,
        executor=immediate_executor,
        upload_executor=immediate_executor,
        timer_factory=timers,
        draft_id="test-draft-0001",
    )
    yield wizard_session
    wizard_session.close()
