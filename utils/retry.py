"""Retry decorators with exponential backoff for read-only HTTP lookups."""

from __future__ import annotations

from typing import Any, Callable, Iterable, ParamSpec, TypeVar

import backoff
import requests

T = TypeVar("T")
P = ParamSpec("P")

# Transport errors worth another attempt; HTTP errors are filtered by ``giveup_on_client_error``.
HTTP_RETRY_EXCEPTIONS: tuple[type[Exception], ...] = (
    requests.ConnectionError,
    requests.Timeout,
    requests.HTTPError,
)


def giveup_on_client_error(exc: Exception) -> bool:
    """Stop retrying on 4xx responses other than 429."""

    if not isinstance(exc, requests.HTTPError) or exc.response is None:
        return False
    status = exc.response.status_code
    return 400 <= status < 500 and status != 429


def retry_with_backoff(
    *,
    exceptions: Iterable[type[Exception]] = HTTP_RETRY_EXCEPTIONS,
    max_tries: int = 3,
    max_time: float | None = None,
    giveup: Callable[[Exception], bool] | None = giveup_on_client_error,
    jitter: Any = backoff.full_jitter,
    logger: Any = None,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Return a decorator applying exponential backoff for ``exceptions``.

    Only idempotent lookups (catalog, exchange rates, geocoding) use this;
    writes to the intake API are never retried automatically.
    """

    exception_tuple: tuple[type[Exception], ...] = tuple(exceptions)

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        def default_giveup(_: Exception) -> bool:
            return False

        return backoff.on_exception(
            backoff.expo,
            exception_tuple,
            max_tries=max_tries,
            max_time=max_time,
            jitter=jitter,
            giveup=giveup or default_giveup,
            logger=logger,
        )(func)

    return decorator
