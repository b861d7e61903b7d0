from __future__ import annotations

import re
import threading

import pytest

from constants.keys import StorageKeys
from models.form_state import DeliveryMethod, DocumentRecord, FormState
from state.form_store import (
    CompletedSteps,
    FormStateContainer,
    ensure_session_id,
    generate_session_id,
    rotate_session_id,
)
from state.keyed_store import KeyedStore, MemoryMedium


class FlakyMedium(MemoryMedium):
    def __init__(self) -> None:
        super().__init__()
        self.broken = False

    def set_item(self, key: str, payload: str) -> None:
        if self.broken:
            raise OSError("write refused")
        super().set_item(key, payload)


def _append_document(item_id: str, name: str):
    def _update(current: FormState) -> FormState:
        documents = dict(current.documents_by_selection)
        documents[item_id] = [*documents.get(item_id, []), DocumentRecord(name=name)]
        return current.model_copy(update={"documents_by_selection": documents})

    return _update


def test_partial_update_merges_only_given_fields(store: KeyedStore) -> None:
    container = FormStateContainer(store)
    container.set({"contact": {"first_name": "Ana", "email": "ana@notaire.fr"}})

    state = container.set({"contact": {"last_name": "  Silva  "}})

    assert state.contact.first_name == "Ana"
    assert state.contact.email == "ana@notaire.fr"
    assert state.contact.last_name == "Silva"


def test_unknown_section_is_rejected(store: KeyedStore) -> None:
    container = FormStateContainer(store)

    with pytest.raises(KeyError):
        container.set({"payment": {"card": "4242"}})


def test_invalid_update_leaves_state_untouched(store: KeyedStore) -> None:
    container = FormStateContainer(store)
    container.set({"commerce": {"currency_code": "USD"}})

    with pytest.raises(ValueError):
        container.set({"commerce": {"currency_code": "XYZ"}})

    assert container.get().commerce.currency_code == "USD"


def test_state_survives_a_reload(store: KeyedStore) -> None:
    container = FormStateContainer(store)
    container.set(
        {
            "selection": {"svc-signature"},
            "delivery": DeliveryMethod.POSTAL,
            "contact": {"first_name": "Ana", "password": "secret-pass"},
        }
    )
    container.set(_append_document("svc-signature", "deed.pdf"))

    reloaded = FormStateContainer(store).hydrate()

    assert reloaded.selection == {"svc-signature"}
    assert reloaded.delivery is DeliveryMethod.POSTAL
    assert [doc.name for doc in reloaded.documents_for("svc-signature")] == ["deed.pdf"]
    assert reloaded.contact.first_name == "Ana"
    assert reloaded.contact.password == ""
    assert "password" not in store.read(StorageKeys.FORM_STATE)["contact"]


def test_invalid_stored_draft_falls_back_to_defaults(store: KeyedStore) -> None:
    store.write(StorageKeys.FORM_STATE, {"delivery": "by-pigeon"})

    state = FormStateContainer(store).hydrate()

    assert state == FormState()


def test_deselecting_an_item_prunes_its_documents(store: KeyedStore) -> None:
    container = FormStateContainer(store)
    container.set({"selection": {"svc-signature", "svc-apostille"}})
    container.set(_append_document("svc-apostille", "birth.pdf"))

    state = container.set({"selection": {"svc-signature"}})

    assert state.documents_by_selection == {}


def test_concurrent_appends_all_survive(store: KeyedStore) -> None:
    container = FormStateContainer(store)
    container.set({"selection": {"svc-signature"}})
    barrier = threading.Barrier(8)

    def _worker(index: int) -> None:
        barrier.wait()
        container.set(_append_document("svc-signature", f"doc-{index}.pdf"))

    threads = [threading.Thread(target=_worker, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    names = sorted(doc.name for doc in container.get().documents_for("svc-signature"))
    assert names == sorted(f"doc-{index}.pdf" for index in range(8))
    stored = store.read(StorageKeys.FORM_STATE)["documents_by_selection"]["svc-signature"]
    assert len(stored) == 8


def test_compare_and_set_rejects_stale_version(store: KeyedStore) -> None:
    container = FormStateContainer(store)
    version, _ = container.snapshot()
    container.set({"delivery": DeliveryMethod.ELECTRONIC})

    assert container.compare_and_set(version, {"delivery": DeliveryMethod.POSTAL}) is None
    assert container.get().delivery is DeliveryMethod.ELECTRONIC

    current_version = container.version
    updated = container.compare_and_set(current_version, {"delivery": DeliveryMethod.POSTAL})
    assert updated is not None and updated.delivery is DeliveryMethod.POSTAL


def test_get_returns_private_copy(store: KeyedStore) -> None:
    container = FormStateContainer(store)
    container.set({"selection": {"svc-signature"}})

    snapshot = container.get()
    snapshot.selection.add("svc-apostille")

    assert container.get().selection == {"svc-signature"}


def test_failed_write_keeps_commit_and_rehydrate_restores_last_saved() -> None:
    medium = FlakyMedium()
    store = KeyedStore(medium)
    container = FormStateContainer(store)
    container.set({"selection": {"svc-signature"}, "delivery": DeliveryMethod.ELECTRONIC})

    medium.broken = True
    optimistic = container.set({"delivery": DeliveryMethod.POSTAL})

    assert optimistic.delivery is DeliveryMethod.POSTAL
    assert store.last_failure is not None
    assert container.get().delivery is DeliveryMethod.POSTAL

    medium.broken = False
    restored = container.rehydrate()

    assert restored.delivery is DeliveryMethod.ELECTRONIC
    assert restored.selection == {"svc-signature"}


def test_listeners_receive_committed_state(store: KeyedStore) -> None:
    container = FormStateContainer(store)
    seen: list[FormState] = []
    unsubscribe = container.subscribe(seen.append)

    container.set({"selection": {"svc-apostille"}})
    unsubscribe()
    container.set({"selection": {"svc-signature"}})

    assert [state.selection for state in seen] == [{"svc-apostille"}]


def test_reset_keeps_session_and_currency(store: KeyedStore) -> None:
    container = FormStateContainer(store)
    container.set({"selection": {"svc-signature"}, "commerce": {"currency_code": "GBP"}})

    state = container.reset(session_id="session_2_abc", currency_code="GBP")

    assert state.selection == set()
    assert state.meta.session_id == "session_2_abc"
    assert state.commerce.currency_code == "GBP"


def test_session_id_format_and_persistence(store: KeyedStore) -> None:
    generated = generate_session_id(clock=lambda: 1718000000.5)
    assert re.fullmatch(r"session_1718000000500_[0-9a-z]{9}", generated)

    first = ensure_session_id(store)
    assert ensure_session_id(store) == first

    rotated = rotate_session_id(store)
    assert rotated != first
    assert ensure_session_id(store) == rotated


def test_completed_steps_grow_and_persist() -> None:
    store = KeyedStore(MemoryMedium())
    completed = CompletedSteps(store)

    assert completed.mark(1) is True
    assert completed.mark(1) is False
    assert completed.backfill([1, 2, 3]) == frozenset({2, 3})
    assert 2 in completed

    reloaded = CompletedSteps(store)
    assert reloaded.load() == frozenset({1, 2, 3})

    reloaded.clear()
    assert CompletedSteps(store).load() == frozenset()


def test_draft_quota_failure_outlives_completed_step_writes() -> None:
    store = KeyedStore(MemoryMedium(quota_bytes=300))
    container = FormStateContainer(store)
    completed = CompletedSteps(store)

    container.set({"contact": {"notes": "x" * 400}})
    completed.mark(1)

    failure = store.last_failure
    assert failure is not None
    assert failure.is_quota
    assert failure.key == StorageKeys.FORM_STATE
    assert container.get().contact.notes == "x" * 400
