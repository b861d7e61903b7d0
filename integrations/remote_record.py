"""Upsert of the server-side draft record, keyed by session id."""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from typing import Any, Mapping, Protocol

import requests

from core.errors import SyncFailure
from integrations.http import ApiClient
from state.autosave import AutosavePayload, advance_funnel, snapshot_funnel_status

logger = logging.getLogger(__name__)

Record = dict[str, Any]


class RecordBackend(Protocol):
    def find_by_session(self, session_id: str) -> Record | None: ...

    def insert(self, payload: Mapping[str, Any]) -> Record: ...

    def update(self, record_id: str, payload: Mapping[str, Any]) -> Record: ...


class HttpRecordBackend:
    """Store drafts as pending submissions of the intake API."""

    def __init__(self, api: ApiClient) -> None:
        self._api = api

    def find_by_session(self, session_id: str) -> Record | None:
        payload = self._api.get("submissions", params={"session_id": session_id, "status": "pending", "limit": 1})
        rows = payload.get("data", []) if isinstance(payload, dict) else payload
        if isinstance(rows, list) and rows and isinstance(rows[0], dict):
            return rows[0]
        return None

    def insert(self, payload: Mapping[str, Any]) -> Record:
        return self._api.post("submissions", json=dict(payload))

    def update(self, record_id: str, payload: Mapping[str, Any]) -> Record:
        return self._api.patch(f"submissions/{record_id}", json=dict(payload))


class InMemoryRecordBackend:
    """Process-local backend used in development and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.records: dict[str, Record] = {}
        self.calls: list[str] = []

    def find_by_session(self, session_id: str) -> Record | None:
        with self._lock:
            self.calls.append("find")
            for record in self.records.values():
                if record.get("session_id") == session_id and record.get("status", "pending") == "pending":
                    return copy.deepcopy(record)
            return None

    def insert(self, payload: Mapping[str, Any]) -> Record:
        with self._lock:
            self.calls.append("insert")
            record_id = f"rec-{next(self._ids)}"
            record = {**copy.deepcopy(dict(payload)), "id": record_id, "status": "pending"}
            self.records[record_id] = record
            return copy.deepcopy(record)

    def update(self, record_id: str, payload: Mapping[str, Any]) -> Record:
        with self._lock:
            self.calls.append("update")
            if record_id not in self.records:
                raise KeyError(record_id)
            self.records[record_id].update(copy.deepcopy(dict(payload)))
            return copy.deepcopy(self.records[record_id])


class RemoteRecordClient:
    """Idempotent ``upsert(session_id, snapshot) -> record_id``."""

    def __init__(self, backend: RecordBackend) -> None:
        self._backend = backend
        self._lock = threading.Lock()

    def upsert(self, session_id: str, snapshot: AutosavePayload) -> str:
        """Update the pending record of ``session_id`` or insert one.

        The stored funnel status never moves backwards. Raises
        :class:`SyncFailure` when the backend cannot be reached.
        """

        if not session_id:
            raise SyncFailure("cannot sync a draft without a session id")
        with self._lock:
            try:
                existing = self._backend.find_by_session(session_id)
                payload = dict(snapshot)
                payload["session_id"] = session_id
                if existing is not None:
                    funnel = advance_funnel(existing.get("funnel_status"), snapshot_funnel_status(snapshot))
                    payload["funnel_status"] = funnel.value
                    self._backend.update(str(existing["id"]), payload)
                    record_id = str(existing["id"])
                else:
                    record = self._backend.insert(payload) or {}
                    record_id = str(record["id"])
            except (requests.RequestException, KeyError, TypeError, ValueError) as exc:
                raise SyncFailure(f"upsert failed for {session_id}: {exc}") from exc
        logger.debug("Synced draft %s to record %s (%s)", session_id, record_id, payload.get("funnel_status"))
        return record_id


__all__ = ["HttpRecordBackend", "InMemoryRecordBackend", "RecordBackend", "RemoteRecordClient"]
