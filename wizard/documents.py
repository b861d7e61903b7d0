"""Background document uploads merged into the draft through the container."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

import requests

from config import UPLOAD_WORKERS
from integrations.storage import DocumentStorage
from models.form_state import DocumentRecord, FormState
from state.form_store import FormStateContainer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadRequest:
    item_id: str
    file_name: str
    data: bytes = field(repr=False)
    mime_type: str = "application/octet-stream"
    option_ids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class UploadFailure:
    item_id: str
    file_name: str
    detail: str


class DocumentUploads:
    """Upload files off the script thread and append their records on completion.

    The append runs as a container updater, so completions racing for the
    same item all land in the list.
    """

    def __init__(
        self,
        container: FormStateContainer,
        storage: DocumentStorage,
        *,
        executor: Executor | None = None,
    ) -> None:
        self._container = container
        self._storage = storage
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=UPLOAD_WORKERS, thread_name_prefix="upload")
        self._lock = threading.Lock()
        self._outstanding: Counter[str] = Counter()
        self._failures: list[UploadFailure] = []

    def submit(self, request: UploadRequest) -> Future[DocumentRecord | None]:
        state = self._container.get()
        if request.item_id not in state.selection:
            raise ValueError(f"{request.item_id} is not selected")
        with self._lock:
            self._outstanding[request.item_id] += 1
        try:
            return self._executor.submit(self._upload, request, state.meta.session_id)
        except RuntimeError:
            self._finish(request.item_id)
            raise

    def submit_many(self, requests_: Iterable[UploadRequest]) -> list[Future[DocumentRecord | None]]:
        return [self.submit(request) for request in requests_]

    def is_uploading(self, item_id: str | None = None) -> bool:
        with self._lock:
            if item_id is None:
                return any(count > 0 for count in self._outstanding.values())
            return self._outstanding[item_id] > 0

    def drain_failures(self) -> list[UploadFailure]:
        with self._lock:
            failures, self._failures = self._failures, []
            return failures

    def remove_document(self, item_id: str, index: int) -> DocumentRecord | None:
        """Drop one document from the draft, then delete its stored object."""

        removed: list[DocumentRecord] = []

        def _remove(current: FormState) -> FormState:
            records = list(current.documents_by_selection.get(item_id, []))
            if not 0 <= index < len(records):
                return current
            removed.append(records.pop(index))
            documents = dict(current.documents_by_selection)
            if records:
                documents[item_id] = records
            else:
                documents.pop(item_id, None)
            return current.model_copy(update={"documents_by_selection": documents})

        self._container.set(_remove)
        if not removed:
            return None
        self._delete_stored(removed[0])
        return removed[0]

    def set_document_options(self, item_id: str, index: int, option_ids: Iterable[str]) -> None:
        chosen = set(option_ids)

        def _update(current: FormState) -> FormState:
            records = list(current.documents_by_selection.get(item_id, []))
            if not 0 <= index < len(records):
                return current
            records[index] = records[index].model_copy(update={"chosen_option_ids": chosen})
            documents = {**current.documents_by_selection, item_id: records}
            return current.model_copy(update={"documents_by_selection": documents})

        self._container.set(_update)

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _upload(self, request: UploadRequest, session_id: str) -> DocumentRecord | None:
        try:
            try:
                stored = self._storage.upload(
                    request.file_name,
                    request.data,
                    request.mime_type,
                    f"{session_id}/{request.item_id}",
                )
            except (requests.RequestException, OSError) as exc:
                logger.warning("Upload of %s failed: %s", request.file_name, exc)
                with self._lock:
                    self._failures.append(UploadFailure(request.item_id, request.file_name, str(exc)))
                return None
            record = DocumentRecord(
                name=request.file_name,
                size=len(request.data),
                mime_type=request.mime_type,
                storage_ref=stored.storage_ref,
                public_url=stored.public_url,
                chosen_option_ids=set(request.option_ids),
                uploaded_at=datetime.now(timezone.utc),
            )
            appended = False

            def _append(current: FormState) -> FormState:
                nonlocal appended
                if request.item_id not in current.selection:
                    return current
                documents = dict(current.documents_by_selection)
                documents[request.item_id] = [*documents.get(request.item_id, []), record]
                appended = True
                return current.model_copy(update={"documents_by_selection": documents})

            self._container.set(_append)
            if not appended:
                logger.info("Item %s was deselected during upload; discarding %s", request.item_id, stored.storage_ref)
                self._delete_stored(record)
                return None
            return record
        finally:
            self._finish(request.item_id)

    def _finish(self, item_id: str) -> None:
        with self._lock:
            self._outstanding[item_id] -= 1
            if self._outstanding[item_id] <= 0:
                del self._outstanding[item_id]

    def _delete_stored(self, record: DocumentRecord) -> None:
        if not record.storage_ref:
            return
        try:
            self._storage.delete(record.storage_ref)
        except (requests.RequestException, OSError) as exc:
            logger.warning("Could not delete stored document %s: %s", record.storage_ref, exc)


__all__ = ["DocumentUploads", "UploadFailure", "UploadRequest"]
