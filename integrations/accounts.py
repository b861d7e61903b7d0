"""Client account creation, a hard prerequisite of the personal-info step."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Protocol

import requests

from core.errors import ACCOUNT_CREATION_MESSAGE, HardPrerequisiteFailure
from integrations.http import ApiClient
from models.form_state import Contact

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientAccount:
    client_id: str
    email: str


class AccountService(Protocol):
    def ensure_client(self, contact: Contact, password: str, record_id: str | None) -> ClientAccount: ...


def _profile_payload(contact: Contact) -> dict[str, object]:
    return {
        "first_name": contact.first_name,
        "last_name": contact.last_name,
        "email": contact.email,
        "phone": contact.phone,
        "address": contact.address,
        "city": contact.city,
        "postal_code": contact.postal_code,
        "country": contact.country,
    }


class HttpAccountService:
    def __init__(self, api: ApiClient) -> None:
        self._api = api

    def ensure_client(self, contact: Contact, password: str, record_id: str | None) -> ClientAccount:
        payload = {**_profile_payload(contact), "password": password, "submission_id": record_id}
        try:
            body = self._api.post("clients", json=payload) or {}
            client_id = str(body["client_id"])
        except (requests.RequestException, KeyError, ValueError) as exc:
            logger.warning("Account creation failed for %s: %s", contact.email, exc)
            raise HardPrerequisiteFailure(ACCOUNT_CREATION_MESSAGE, cause=str(exc)) from exc
        return ClientAccount(client_id=client_id, email=contact.email)


class InMemoryAccountService:
    """Accept every new account; ``fail_with`` simulates an outage."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.accounts: dict[str, dict[str, object]] = {}
        self.fail_with: str | None = None

    def ensure_client(self, contact: Contact, password: str, record_id: str | None) -> ClientAccount:
        if self.fail_with:
            raise HardPrerequisiteFailure(ACCOUNT_CREATION_MESSAGE, cause=self.fail_with)
        with self._lock:
            existing = self.accounts.get(contact.email.lower())
            if existing is not None:
                existing["submission_id"] = record_id
                return ClientAccount(client_id=str(existing["client_id"]), email=contact.email)
            client_id = f"client-{next(self._ids)}"
            self.accounts[contact.email.lower()] = {
                **_profile_payload(contact),
                "client_id": client_id,
                "submission_id": record_id,
            }
        return ClientAccount(client_id=client_id, email=contact.email)


__all__ = ["AccountService", "ClientAccount", "HttpAccountService", "InMemoryAccountService"]
