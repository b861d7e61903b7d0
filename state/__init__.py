"""Draft persistence: keyed store, form container and sync helpers."""

from .form_store import CompletedSteps, FormStateContainer, ensure_session_id
from .keyed_store import FileMedium, KeyedStore, MemoryMedium

__all__ = [
    "CompletedSteps",
    "FileMedium",
    "FormStateContainer",
    "KeyedStore",
    "MemoryMedium",
    "ensure_session_id",
]
