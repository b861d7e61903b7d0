from __future__ import annotations

from typing import Any

import pytest
import requests

from core.errors import LookupFailure
from integrations.geocoding import AddressLookupClient, AddressLookupResult, NullAddressLookup
from models.form_state import Contact, FormState
from state.form_store import FormStateContainer
from state.keyed_store import KeyedStore
from wizard.address import AddressAutofill, merge_address_lookup

PARIS = AddressLookupResult(
    formatted_address="1 Rue de Rivoli, 75001 Paris, France",
    city="Paris",
    postal_code="75001",
    country="FR",
    lat=48.8556,
    lon=2.3522,
    iana_time_zone_id="Europe/Paris",
)


class FixedLookup:
    def __init__(self, result: AddressLookupResult, *, on_lookup=None) -> None:
        self.result = result
        self.queries: list[str | None] = []
        self.on_lookup = on_lookup

    def lookup(self, *, free_text: str | None = None, lat: float | None = None, lon: float | None = None):
        self.queries.append(free_text)
        if self.on_lookup is not None:
            self.on_lookup()
        return self.result


class FakeResponse:
    def __init__(self, status_code: int, body: Any) -> None:
        self.status_code = status_code
        self._body = body

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def json(self) -> Any:
        return self._body


class FakeSession:
    def __init__(self, responses: list[FakeResponse]) -> None:
        self.responses = responses
        self.calls: list[dict[str, Any]] = []

    def get(self, url: str, params: dict[str, Any] | None = None, timeout: float | None = None) -> FakeResponse:
        self.calls.append({"url": url, "params": params})
        return self.responses.pop(0)


@pytest.fixture
def container(store: KeyedStore) -> FormStateContainer:
    container = FormStateContainer(store)
    container.set({"contact": {"address": "1 rue de rivoli paris"}})
    return container


def test_merge_fills_only_empty_fields() -> None:
    state = FormState(contact=Contact(address="1 rue de rivoli paris", city="Paris 1er"))

    merged = merge_address_lookup(state, "1 rue de rivoli paris", PARIS)

    contact = merged.contact
    assert contact.address == "1 Rue de Rivoli, 75001 Paris, France"
    assert contact.city == "Paris 1er"
    assert contact.postal_code == "75001"
    assert contact.time_zone == "Europe/Paris"
    assert contact.latitude == pytest.approx(48.8556)
    assert contact.address_auto_populated


def test_merge_discards_result_for_edited_address() -> None:
    state = FormState(contact=Contact(address="12 avenue Foch"))

    assert merge_address_lookup(state, "1 rue de rivoli paris", PARIS) is state


def test_autofill_merges_through_container(container: FormStateContainer, immediate_executor) -> None:
    lookup = FixedLookup(PARIS)
    autofill = AddressAutofill(container, lookup, executor=immediate_executor)

    assert autofill.request("1 rue de rivoli paris").result()

    assert lookup.queries == ["1 rue de rivoli paris"]
    assert container.get().contact.postal_code == "75001"


def test_autofill_drops_result_when_user_typed_meanwhile(container: FormStateContainer, immediate_executor) -> None:
    lookup = FixedLookup(PARIS, on_lookup=lambda: container.set({"contact": {"address": "12 avenue Foch"}}))
    autofill = AddressAutofill(container, lookup, executor=immediate_executor)

    assert not autofill.request("1 rue de rivoli paris").result()

    contact = container.get().contact
    assert contact.address == "12 avenue Foch"
    assert contact.postal_code in (None, "")


def test_lookup_failure_is_soft(container: FormStateContainer, immediate_executor) -> None:
    autofill = AddressAutofill(container, NullAddressLookup(), executor=immediate_executor)

    assert not autofill.request("1 rue de rivoli paris").result()
    assert not autofill.request("   ").result()


def test_http_client_parses_wrapped_result() -> None:
    session = FakeSession(
        [
            FakeResponse(
                200,
                {"result": {"formatted_address": "1 Rue de Rivoli", "city": "Paris", "lat": 48.8, "lon": 2.3}},
            )
        ]
    )
    client = AddressLookupClient("https://geo.example.test", api_key="k", session=session, breaker_store={})

    result = client.lookup(free_text=" 1 rue de rivoli ")

    assert result.city == "Paris"
    assert result.longitude == pytest.approx(2.3)
    assert session.calls[0]["url"] == "https://geo.example.test/lookup"
    assert session.calls[0]["params"] == {"key": "k", "q": "1 rue de rivoli"}


def test_http_client_requires_a_query() -> None:
    client = AddressLookupClient("https://geo.example.test", session=FakeSession([]), breaker_store={})

    with pytest.raises(LookupFailure):
        client.lookup()


def test_unconfigured_client_fails_soft() -> None:
    with pytest.raises(LookupFailure):
        AddressLookupClient("", session=FakeSession([]), breaker_store={}).lookup(free_text="Paris")
