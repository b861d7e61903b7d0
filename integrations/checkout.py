"""Payment checkout session creation."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Protocol
from urllib.parse import urlencode

import requests

from constants.keys import QueryParams
from core.errors import CHECKOUT_MESSAGE, HardPrerequisiteFailure
from integrations.http import ApiClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    redirect_url: str
    checkout_ref: str


class CheckoutGateway(Protocol):
    def create_session(
        self, snapshot: Mapping[str, Any], *, success_url: str, cancel_url: str
    ) -> CheckoutSession: ...


class HttpCheckoutGateway:
    def __init__(self, api: ApiClient) -> None:
        self._api = api

    def create_session(
        self, snapshot: Mapping[str, Any], *, success_url: str, cancel_url: str
    ) -> CheckoutSession:
        payload = {"submission": dict(snapshot), "success_url": success_url, "cancel_url": cancel_url}
        try:
            body = self._api.post("checkout/sessions", json=payload) or {}
            session = CheckoutSession(redirect_url=str(body["url"]), checkout_ref=str(body["id"]))
        except (requests.RequestException, KeyError, ValueError) as exc:
            logger.warning("Checkout session creation failed: %s", exc)
            raise HardPrerequisiteFailure(CHECKOUT_MESSAGE, cause=str(exc)) from exc
        return session


class InMemoryCheckoutGateway:
    """Skip the provider and send the user straight to the success URL."""

    def __init__(self) -> None:
        self.sessions: list[dict[str, Any]] = []
        self.fail_with: str | None = None

    def create_session(
        self, snapshot: Mapping[str, Any], *, success_url: str, cancel_url: str
    ) -> CheckoutSession:
        if self.fail_with:
            raise HardPrerequisiteFailure(CHECKOUT_MESSAGE, cause=self.fail_with)
        checkout_ref = f"cs_{uuid.uuid4().hex[:16]}"
        self.sessions.append({"ref": checkout_ref, "snapshot": dict(snapshot), "cancel_url": cancel_url})
        separator = "&" if "?" in success_url else "?"
        redirect = f"{success_url}{separator}{urlencode({QueryParams.CHECKOUT_SESSION: checkout_ref})}"
        return CheckoutSession(redirect_url=redirect, checkout_ref=checkout_ref)


__all__ = ["CheckoutGateway", "CheckoutSession", "HttpCheckoutGateway", "InMemoryCheckoutGateway"]
