"""Document storage: object naming, upload and delete."""

from __future__ import annotations

import logging
import re
import threading
import time
import unicodedata
from dataclasses import dataclass
from typing import Callable, Protocol
from urllib.parse import quote

import requests

from integrations.http import ApiClient

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_REPEATED_UNDERSCORES = re.compile(r"_+")


def sanitize_file_name(name: str) -> str:
    """Return an ASCII-only object name.

    >>> sanitize_file_name("Acte de vente (signé).pdf")
    'Acte_de_vente_signe_.pdf'
    """

    decomposed = unicodedata.normalize("NFD", name)
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = _REPEATED_UNDERSCORES.sub("_", _UNSAFE_CHARS.sub("_", ascii_only))
    return cleaned or "document"


def build_object_path(session_id: str, item_id: str, file_name: str, *, clock: Callable[[], float] = time.time) -> str:
    """Return ``<session>/<item>/<epoch-ms>_<sanitized name>``."""

    return f"{session_id}/{item_id}/{int(clock() * 1000)}_{sanitize_file_name(file_name)}"


@dataclass(frozen=True)
class StoredObject:
    storage_ref: str
    public_url: str


class DocumentStorage(Protocol):
    def upload(self, file_name: str, data: bytes, mime_type: str, scope_id: str) -> StoredObject: ...

    def delete(self, storage_ref: str) -> None: ...


class HttpDocumentStorage:
    def __init__(self, api: ApiClient) -> None:
        self._api = api

    def upload(self, file_name: str, data: bytes, mime_type: str, scope_id: str) -> StoredObject:
        session_id, _, item_id = scope_id.partition("/")
        path = build_object_path(session_id, item_id or "misc", file_name)
        body = self._api.request(
            "PUT",
            f"storage/documents/{quote(path)}",
            data=data,
            headers={"Content-Type": mime_type},
        ) or {}
        public_url = str(body.get("public_url") or self._api.url(f"storage/documents/{quote(path)}"))
        return StoredObject(storage_ref=path, public_url=public_url)

    def delete(self, storage_ref: str) -> None:
        try:
            self._api.delete(f"storage/documents/{quote(storage_ref)}")
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                return
            raise


class InMemoryDocumentStorage:
    def __init__(self, *, base_url: str = "memory://documents") -> None:
        self._lock = threading.Lock()
        self.base_url = base_url
        self.objects: dict[str, bytes] = {}

    def upload(self, file_name: str, data: bytes, mime_type: str, scope_id: str) -> StoredObject:
        session_id, _, item_id = scope_id.partition("/")
        path = build_object_path(session_id, item_id or "misc", file_name)
        with self._lock:
            # Same-millisecond uploads of one name would collide.
            while path in self.objects:
                path = f"{path}_"
            self.objects[path] = bytes(data)
        return StoredObject(storage_ref=path, public_url=f"{self.base_url}/{path}")

    def delete(self, storage_ref: str) -> None:
        with self._lock:
            self.objects.pop(storage_ref, None)


__all__ = [
    "DocumentStorage",
    "HttpDocumentStorage",
    "InMemoryDocumentStorage",
    "StoredObject",
    "build_object_path",
    "sanitize_file_name",
]
