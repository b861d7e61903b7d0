"""Size-bounded key/value persistence for wizard drafts.

The store never raises on writes. Failures are returned to the caller and
broadcast to subscribers so the UI can show a "changes may not be saved"
notice while the wizard keeps running in memory.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Protocol

from config import STORAGE_QUOTA_BYTES, STORAGE_WARN_BYTES
from core.errors import QuotaExceededError, StorageFailure, StorageFailureKind

logger = logging.getLogger(__name__)

FailureListener = Callable[[StorageFailure], None]


class StorageMedium(Protocol):
    """Synchronous string medium backing a :class:`KeyedStore`."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, payload: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


def _payload_size(payload: str) -> int:
    return len(payload.encode("utf-8"))


class MemoryMedium:
    """Process-local medium with the same quota semantics as a browser store."""

    def __init__(self, *, quota_bytes: int = STORAGE_QUOTA_BYTES) -> None:
        self.quota_bytes = quota_bytes
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, payload: str) -> None:
        used = sum(_payload_size(value) for name, value in self._items.items() if name != key)
        if used + _payload_size(payload) > self.quota_bytes:
            raise QuotaExceededError(f"storing {key!r} exceeds the {self.quota_bytes} byte quota")
        self._items[key] = payload

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._items)


class FileMedium:
    """One JSON file per key inside ``directory``."""

    def __init__(self, directory: str | Path, *, quota_bytes: int = STORAGE_QUOTA_BYTES) -> None:
        self.directory = Path(directory)
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in key)
        return self.directory / f"{safe}.json"

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set_item(self, key: str, payload: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self._path(key)
        used = sum(entry.stat().st_size for entry in self.directory.glob("*.json") if entry != target)
        if used + _payload_size(payload) > self.quota_bytes:
            raise QuotaExceededError(f"storing {key!r} exceeds the {self.quota_bytes} byte quota")
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, target)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class KeyedStore:
    """JSON get/set/subscribe facade over a :class:`StorageMedium`."""

    def __init__(self, medium: StorageMedium, *, warn_bytes: int = STORAGE_WARN_BYTES) -> None:
        self._medium = medium
        self._warn_bytes = warn_bytes
        self._lock = threading.Lock()
        self._listeners: list[FailureListener] = []
        self._failures: dict[str, StorageFailure] = {}

    @property
    def last_failure(self) -> StorageFailure | None:
        """Return the most recent failure among keys whose last write failed."""

        return next(reversed(self._failures.values()), None)

    def failure_for(self, key: str) -> StorageFailure | None:
        return self._failures.get(key)

    def read(self, key: str, default: Any = None) -> Any:
        """Return the decoded value for ``key`` or ``default`` when absent or corrupt."""

        with self._lock:
            try:
                payload = self._medium.get_item(key)
            except OSError as exc:
                logger.warning("Reading %s from local storage failed: %s", key, exc)
                return default
        if payload is None:
            return default
        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt local storage entry %s", key)
            return default

    def write(self, key: str, value: Any) -> StorageFailure | None:
        """Persist ``value`` under ``key``; return a failure instead of raising."""

        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            return self._fail(StorageFailure(StorageFailureKind.WRITE_ERROR, key, f"not serializable: {exc}"))
        size = _payload_size(payload)
        if size > self._warn_bytes:
            logger.warning("Local storage entry %s is large (%.1f MB)", key, size / (1024 * 1024))
        with self._lock:
            try:
                self._medium.set_item(key, payload)
            except QuotaExceededError as exc:
                failure = StorageFailure(StorageFailureKind.QUOTA_EXCEEDED, key, str(exc))
            except OSError as exc:
                failure = StorageFailure(StorageFailureKind.WRITE_ERROR, key, str(exc))
            else:
                failure = None
        if failure is not None:
            return self._fail(failure)
        self._failures.pop(key, None)
        return None

    def remove(self, key: str) -> StorageFailure | None:
        with self._lock:
            try:
                self._medium.remove_item(key)
            except OSError as exc:
                failure = StorageFailure(StorageFailureKind.WRITE_ERROR, key, str(exc))
            else:
                self._failures.pop(key, None)
                return None
        return self._fail(failure)

    def subscribe(self, listener: FailureListener) -> Callable[[], None]:
        """Register ``listener`` for write failures and return an unsubscribe callback."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _fail(self, failure: StorageFailure) -> StorageFailure:
        self._failures.pop(failure.key, None)
        self._failures[failure.key] = failure
        logger.warning("Local storage write failed (%s) for %s: %s", failure.kind, failure.key, failure.detail)
        for listener in list(self._listeners):
            try:
                listener(failure)
            except Exception:  # pragma: no cover - listener bugs must not break writes
                logger.exception("Storage failure listener raised")
        return failure


__all__ = ["FileMedium", "KeyedStore", "MemoryMedium", "StorageMedium"]
