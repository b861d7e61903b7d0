"""Thin ``requests`` wrapper shared by the intake API clients."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import requests

from config import HTTP_TIMEOUT_SECONDS, INTAKE_API_KEY, INTAKE_API_URL

logger = logging.getLogger(__name__)

_HEADERS = {"User-Agent": "NotaryIntake/1.0", "Accept": "application/json"}


class ApiClient:
    """JSON client bound to one base URL."""

    def __init__(
        self,
        base_url: str = INTAKE_API_URL,
        *,
        api_key: str = INTAKE_API_KEY,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(_HEADERS)
        if api_key:
            self._session.headers["Authorization"] = f"Bearer {api_key}"

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        data: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (``None`` when empty).

        Raises ``requests.RequestException`` on transport errors and non-2xx
        responses, and ``ValueError`` when the body is not JSON.
        """

        response = self._session.request(
            method,
            self.url(path),
            params=params,
            json=json,
            data=data,
            headers=dict(headers) if headers else None,
            timeout=self.timeout,
        )
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    def get(self, path: str, **kwargs: Any) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Any:
        return self.request("POST", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Any:
        return self.request("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Any:
        return self.request("DELETE", path, **kwargs)
