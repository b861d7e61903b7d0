"""Canonical in-memory draft mirrored to the local keyed store.

Every mutation goes through :meth:`FormStateContainer.set`, which runs under a
re-entrant lock and hands updater callables the latest committed state. Two
upload callbacks appending to the same document list therefore both survive,
no matter which thread finishes first.
"""

from __future__ import annotations

import logging
import secrets
import string
import threading
import time
from typing import Any, Callable, Iterable, Mapping, Union

from pydantic import BaseModel, ValidationError

from constants.keys import StorageKeys
from models.form_state import Commerce, FormState, Meta
from state.keyed_store import KeyedStore

logger = logging.getLogger(__name__)

Updater = Callable[[FormState], FormState]
Update = Union[FormState, Mapping[str, Any], Updater]
ChangeListener = Callable[[FormState], None]

_SESSION_ALPHABET = string.digits + string.ascii_lowercase


def generate_session_id(*, clock: Callable[[], float] = time.time) -> str:
    """Return an opaque id like ``session_1718000000000_k3j9x0a1b``."""

    suffix = "".join(secrets.choice(_SESSION_ALPHABET) for _ in range(9))
    return f"session_{int(clock() * 1000)}_{suffix}"


def ensure_session_id(store: KeyedStore) -> str:
    """Return the persisted session id, creating it on first use."""

    existing = store.read(StorageKeys.SESSION_ID)
    if isinstance(existing, str) and existing.strip():
        return existing
    session_id = generate_session_id()
    store.write(StorageKeys.SESSION_ID, session_id)
    logger.info("Started wizard session %s", session_id)
    return session_id


def rotate_session_id(store: KeyedStore) -> str:
    """Replace the persisted session id so a new draft gets a new remote record."""

    session_id = generate_session_id()
    store.write(StorageKeys.SESSION_ID, session_id)
    logger.info("Rotated wizard session to %s", session_id)
    return session_id


def merge_sections(state: FormState, partial: Mapping[str, Any]) -> FormState:
    """Merge ``partial`` into ``state`` section by section.

    Mapping values for model sections (``contact``, ``commerce``, ``meta``)
    update only the given fields; other values replace the section.
    """

    updates: dict[str, Any] = {}
    for section, value in partial.items():
        if section not in FormState.model_fields:
            raise KeyError(f"unknown form section: {section}")
        current = getattr(state, section)
        if isinstance(current, BaseModel) and isinstance(value, Mapping):
            updates[section] = current.model_copy(update=dict(value))
        else:
            updates[section] = value
    return state.model_copy(update=updates)


class FormStateContainer:
    """Single owner of the wizard draft."""

    def __init__(self, store: KeyedStore, *, key: str = StorageKeys.FORM_STATE) -> None:
        self._store = store
        self._key = key
        self._lock = threading.RLock()
        self._state = FormState()
        self._version = 0
        self._listeners: list[ChangeListener] = []

    @property
    def store(self) -> KeyedStore:
        return self._store

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def get(self) -> FormState:
        """Return a private copy of the committed draft."""

        with self._lock:
            return self._state.model_copy(deep=True)

    def snapshot(self) -> tuple[int, FormState]:
        with self._lock:
            return self._version, self._state.model_copy(deep=True)

    def hydrate(self) -> FormState:
        """Load the draft from the store, falling back to defaults."""

        raw = self._store.read(self._key)
        state = FormState()
        if isinstance(raw, Mapping):
            try:
                state = FormState.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Stored draft is invalid; starting fresh (%s errors)", exc.error_count())
        elif raw is not None:
            logger.warning("Stored draft has unexpected type %s; starting fresh", type(raw).__name__)
        with self._lock:
            self._state = state
            self._version += 1
            snapshot = state.model_copy(deep=True)
        self._notify(snapshot)
        return snapshot

    def rehydrate(self) -> FormState:
        """Replace the in-memory draft with the last successfully persisted one."""

        logger.info("Rehydrating draft from local storage")
        return self.hydrate()

    def set(self, update: Update) -> FormState:
        """Commit ``update`` and persist it before returning.

        ``update`` may be a full :class:`FormState`, a per-section mapping, or a
        callable receiving the latest committed draft.
        """

        with self._lock:
            snapshot = self._commit(update)
        self._notify(snapshot)
        return snapshot

    def compare_and_set(self, expected_version: int, update: Update) -> FormState | None:
        """Commit ``update`` only when nothing else committed since ``expected_version``."""

        with self._lock:
            if self._version != expected_version:
                return None
            snapshot = self._commit(update)
        self._notify(snapshot)
        return snapshot

    def reset(self, *, session_id: str, currency_code: str | None = None) -> FormState:
        """Discard the draft, keeping only the session id and display currency."""

        commerce = Commerce(currency_code=currency_code) if currency_code else Commerce()
        return self.set(FormState(meta=Meta(session_id=session_id), commerce=commerce))

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _commit(self, update: Update) -> FormState:
        current = self._state.model_copy(deep=True)
        candidate = self._resolve(current, update)
        committed = FormState.model_validate(candidate)
        self._state = committed
        self._version += 1
        # A failed write keeps the optimistic commit; the store reports it.
        self._store.write(self._key, committed.to_storage())
        return committed.model_copy(deep=True)

    @staticmethod
    def _resolve(current: FormState, update: Update) -> FormState:
        if isinstance(update, FormState):
            return update
        if isinstance(update, Mapping):
            return merge_sections(current, update)
        if callable(update):
            result = update(current)
            if not isinstance(result, FormState):
                raise TypeError(f"updater returned {type(result).__name__}, expected FormState")
            return result
        raise TypeError(f"unsupported update type: {type(update).__name__}")

    def _notify(self, snapshot: FormState) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Form state listener failed")


class CompletedSteps:
    """Persisted, monotonically growing set of completed step ordinals."""

    def __init__(self, store: KeyedStore, *, key: str = StorageKeys.COMPLETED_STEPS) -> None:
        self._store = store
        self._key = key
        self._lock = threading.RLock()
        self._ordinals: set[int] = set()

    def load(self) -> frozenset[int]:
        raw = self._store.read(self._key, [])
        ordinals: set[int] = set()
        if isinstance(raw, list):
            ordinals = {entry for entry in raw if isinstance(entry, int) and not isinstance(entry, bool)}
        with self._lock:
            self._ordinals = ordinals
            return frozenset(ordinals)

    def snapshot(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._ordinals)

    def __contains__(self, ordinal: object) -> bool:
        with self._lock:
            return ordinal in self._ordinals

    def mark(self, ordinal: int) -> bool:
        """Add ``ordinal``; return ``False`` when it was already present."""

        return bool(self.backfill([ordinal]))

    def backfill(self, ordinals: Iterable[int]) -> frozenset[int]:
        """Add every ordinal in ``ordinals`` and return the newly added ones."""

        with self._lock:
            added = frozenset(ordinal for ordinal in ordinals if ordinal not in self._ordinals)
            if not added:
                return added
            self._ordinals |= added
            self._store.write(self._key, sorted(self._ordinals))
            return added

    def clear(self) -> None:
        with self._lock:
            self._ordinals = set()
            self._store.write(self._key, [])


__all__ = [
    "CompletedSteps",
    "FormStateContainer",
    "ensure_session_id",
    "generate_session_id",
    "merge_sections",
    "rotate_session_id",
]
