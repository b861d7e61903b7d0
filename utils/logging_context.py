"""Context fields (draft session, wizard step, operation) on every log record."""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from typing import Iterator

_DEFAULT_LOG_FORMAT = (
    "%(asctime)s %(levelname)s [session=%(session_id)s step=%(wizard_step)s "
    "op=%(operation)s] %(name)s: %(message)s"
)

_CONTEXT_VARS: dict[str, contextvars.ContextVar[str]] = {
    "session_id": contextvars.ContextVar("session_id", default="-"),
    "wizard_step": contextvars.ContextVar("wizard_step", default="-"),
    "operation": contextvars.ContextVar("operation", default="-"),
}
_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()
_RECORD_FACTORY_INSTALLED = False


def _coerce(value: str | None) -> str:
    if value is None:
        return "-"
    return value.strip() or "-"


def _record_factory(*args: object, **kwargs: object) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    for field, var in _CONTEXT_VARS.items():
        setattr(record, field, var.get())
    return record


def configure_logging(*, level: int = logging.INFO) -> None:
    """Install the context-aware record factory and a root handler format."""

    global _RECORD_FACTORY_INSTALLED
    if not _RECORD_FACTORY_INSTALLED:
        logging.setLogRecordFactory(_record_factory)
        _RECORD_FACTORY_INSTALLED = True
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_DEFAULT_LOG_FORMAT)
    for handler in root.handlers:
        if handler.formatter is None:
            handler.setFormatter(logging.Formatter(_DEFAULT_LOG_FORMAT))


def set_session_id(session_id: str | None) -> None:
    """Bind the draft session id for subsequent log records."""

    configure_logging()
    _CONTEXT_VARS["session_id"].set(_coerce(session_id))


def set_wizard_step(step: str | None) -> None:
    _CONTEXT_VARS["wizard_step"].set(_coerce(step))


@contextmanager
def log_context(
    *,
    session_id: str | None = None,
    wizard_step: str | None = None,
    operation: str | None = None,
) -> Iterator[None]:
    """Override the given fields until the block exits."""

    overrides = {"session_id": session_id, "wizard_step": wizard_step, "operation": operation}
    tokens = [
        (_CONTEXT_VARS[field], _CONTEXT_VARS[field].set(_coerce(value)))
        for field, value in overrides.items()
        if value is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
