from __future__ import annotations

import pytest

from integrations.storage import InMemoryDocumentStorage, StoredObject
from state.form_store import FormStateContainer
from state.keyed_store import KeyedStore
from wizard.documents import DocumentUploads, UploadRequest


class BrokenStorage(InMemoryDocumentStorage):
    def upload(self, file_name: str, data: bytes, mime_type: str, scope_id: str) -> StoredObject:
        raise OSError("bucket unavailable")


@pytest.fixture
def container(store: KeyedStore) -> FormStateContainer:
    container = FormStateContainer(store)
    container.set({"meta": {"session_id": "session_1_abcdefghi"}, "selection": {"svc-signature", "svc-apostille"}})
    return container


@pytest.fixture
def storage() -> InMemoryDocumentStorage:
    return InMemoryDocumentStorage()


def _request(item_id: str = "svc-signature", name: str = "deed.pdf") -> UploadRequest:
    return UploadRequest(item_id, name, b"%PDF-1.4 test", "application/pdf", frozenset({"opt-express"}))


def test_upload_appends_document_record(
    container: FormStateContainer, storage: InMemoryDocumentStorage, immediate_executor
) -> None:
    uploads = DocumentUploads(container, storage, executor=immediate_executor)

    record = uploads.submit(_request()).result()

    assert record is not None
    assert record.storage_ref.startswith("session_1_abcdefghi/svc-signature/")
    assert record.storage_ref in storage.objects
    assert record.size == len(b"%PDF-1.4 test")
    assert record.chosen_option_ids == {"opt-express"}
    (stored,) = container.get().documents_for("svc-signature")
    assert stored.name == "deed.pdf"
    assert not uploads.is_uploading()


def test_concurrent_completions_are_all_kept(
    container: FormStateContainer, storage: InMemoryDocumentStorage, deferred_executor
) -> None:
    uploads = DocumentUploads(container, storage, executor=deferred_executor)
    uploads.submit_many([_request(name="a.pdf"), _request(name="b.pdf"), _request("svc-apostille", "c.pdf")])

    assert uploads.is_uploading()
    assert uploads.is_uploading("svc-apostille")
    deferred_executor.run_all()

    state = container.get()
    assert [doc.name for doc in state.documents_for("svc-signature")] == ["a.pdf", "b.pdf"]
    assert [doc.name for doc in state.documents_for("svc-apostille")] == ["c.pdf"]
    assert not uploads.is_uploading()


def test_upload_for_deselected_item_is_discarded(
    container: FormStateContainer, storage: InMemoryDocumentStorage, deferred_executor
) -> None:
    uploads = DocumentUploads(container, storage, executor=deferred_executor)
    future = uploads.submit(_request())
    container.set({"selection": {"svc-apostille"}})

    deferred_executor.run_all()

    assert future.result() is None
    assert container.get().documents_for("svc-signature") == []
    assert storage.objects == {}


def test_submit_rejects_unselected_item(
    container: FormStateContainer, storage: InMemoryDocumentStorage, immediate_executor
) -> None:
    uploads = DocumentUploads(container, storage, executor=immediate_executor)

    with pytest.raises(ValueError):
        uploads.submit(_request("svc-translation"))

    assert not uploads.is_uploading()


def test_failed_upload_is_reported(container: FormStateContainer, immediate_executor) -> None:
    uploads = DocumentUploads(container, BrokenStorage(), executor=immediate_executor)

    assert uploads.submit(_request()).result() is None

    (failure,) = uploads.drain_failures()
    assert failure.file_name == "deed.pdf"
    assert "bucket unavailable" in failure.detail
    assert uploads.drain_failures() == []
    assert container.get().document_count() == 0
    assert not uploads.is_uploading()


def test_remove_document_deletes_stored_object(
    container: FormStateContainer, storage: InMemoryDocumentStorage, immediate_executor
) -> None:
    uploads = DocumentUploads(container, storage, executor=immediate_executor)
    first = uploads.submit(_request(name="a.pdf")).result()
    uploads.submit(_request(name="b.pdf"))

    removed = uploads.remove_document("svc-signature", 0)

    assert removed is not None and removed.storage_ref == first.storage_ref
    assert first.storage_ref not in storage.objects
    assert [doc.name for doc in container.get().documents_for("svc-signature")] == ["b.pdf"]
    assert uploads.remove_document("svc-signature", 5) is None


def test_removing_last_document_drops_the_item_entry(
    container: FormStateContainer, storage: InMemoryDocumentStorage, immediate_executor
) -> None:
    uploads = DocumentUploads(container, storage, executor=immediate_executor)
    uploads.submit(_request())

    uploads.remove_document("svc-signature", 0)

    assert "svc-signature" not in container.get().documents_by_selection


def test_set_document_options(
    container: FormStateContainer, storage: InMemoryDocumentStorage, immediate_executor
) -> None:
    uploads = DocumentUploads(container, storage, executor=immediate_executor)
    uploads.submit(_request())

    uploads.set_document_options("svc-signature", 0, ["opt-extra-copy"])

    (document,) = container.get().documents_for("svc-signature")
    assert document.chosen_option_ids == {"opt-extra-copy"}
