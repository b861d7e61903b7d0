from __future__ import annotations

import logging

import pytest

from constants.keys import StorageKeys
from integrations.catalog import DEFAULT_CATALOG
from models.form_state import DocumentRecord, FormState
from state.form_store import CompletedSteps, FormStateContainer
from state.keyed_store import KeyedStore
from wizard.guard import Arrival, GuardAction, evaluate
from wizard.params import (
    ExternalParameterResolver,
    match_catalog,
    normalize_slug,
    resolve_single,
    split_param_values,
)


@pytest.fixture
def container(store: KeyedStore) -> FormStateContainer:
    return FormStateContainer(store)


@pytest.fixture
def completed(store: KeyedStore) -> CompletedSteps:
    return CompletedSteps(store)


@pytest.fixture
def resolver(container: FormStateContainer, completed: CompletedSteps, store: KeyedStore) -> ExternalParameterResolver:
    return ExternalParameterResolver(container, completed, store)


def test_normalize_slug_strips_diacritics_and_punctuation() -> None:
    assert normalize_slug("  Légalisation d'Acte ") == "legalisation-d-acte"
    assert normalize_slug("--Apostille__Hague--") == "apostille-hague"
    assert normalize_slug("!!!") == ""


def test_split_param_values_drops_blanks_and_duplicates() -> None:
    assert split_param_values("SIG, ,CTC,SIG") == ["SIG", "CTC"]


@pytest.mark.parametrize(
    ("value", "expected_id", "field"),
    [
        ("notarization-of-signature", "svc-signature", "slug"),
        ("sig", "svc-signature", "code"),
        ("apostille-hague", "svc-apostille", "url_key"),
        ("Certified Translation", "svc-translation", "slug"),
        ("svc-apostille", "svc-apostille", "id"),
    ],
)
def test_exact_matches_follow_field_precedence(value: str, expected_id: str, field: str) -> None:
    matches = match_catalog(value, DEFAULT_CATALOG.items)

    assert matches[0].item.id == expected_id
    assert matches[0].field == field
    assert matches[0].exact


def test_prefix_match_is_used_only_without_exact_match(caplog: pytest.LogCaptureFixture) -> None:
    matches = match_catalog("certified", DEFAULT_CATALOG.items)

    assert [match.item.id for match in matches] == ["svc-certified-copy", "svc-translation"]
    assert not any(match.exact for match in matches)
    with caplog.at_level(logging.WARNING, logger="wizard.params"):
        item = resolve_single("certified", DEFAULT_CATALOG.items)
    assert item is not None and item.id == "svc-certified-copy"
    assert any("matches 2 items" in record.message for record in caplog.records)


def test_exact_match_beats_prefix_match() -> None:
    matches = match_catalog("apostille", DEFAULT_CATALOG.items)

    assert [match.item.id for match in matches] == ["svc-apostille"]
    assert matches[0].exact


def test_service_param_preselects_and_unlocks_documents(
    resolver: ExternalParameterResolver, container: FormStateContainer, completed: CompletedSteps
) -> None:
    outcome = resolver.apply_service_param("notarization-of-signature", DEFAULT_CATALOG)

    assert outcome.applied
    assert outcome.navigate_to == 2
    state = container.get()
    assert state.selection == {"svc-signature"}
    assert state.meta.last_applied_external_param == "notarization-of-signature"
    assert 1 in completed
    decision = evaluate(Arrival(2), state, completed.snapshot())
    assert decision.action is GuardAction.ALLOW


def test_service_param_is_applied_at_most_once(
    resolver: ExternalParameterResolver, container: FormStateContainer
) -> None:
    resolver.apply_service_param("SIG", DEFAULT_CATALOG)
    container.set({"selection": {"svc-apostille"}})

    outcome = resolver.apply_service_param("SIG", DEFAULT_CATALOG)

    assert not outcome.applied
    assert container.get().selection == {"svc-apostille"}


def test_marker_survives_reload(store: KeyedStore, resolver: ExternalParameterResolver) -> None:
    resolver.apply_service_param("SIG", DEFAULT_CATALOG)

    reloaded = FormStateContainer(store)
    reloaded.hydrate()
    again = ExternalParameterResolver(reloaded, CompletedSteps(store), store)

    assert not again.apply_service_param("SIG", DEFAULT_CATALOG).applied


def test_documents_kept_only_when_selection_unchanged(
    resolver: ExternalParameterResolver, container: FormStateContainer
) -> None:
    container.set(
        {
            "selection": {"svc-signature"},
            "documents_by_selection": {"svc-signature": [DocumentRecord(name="deed.pdf")]},
        }
    )

    resolver.apply_service_param("SIG", DEFAULT_CATALOG)
    assert container.get().document_count() == 1

    resolver.apply_service_param("CTC", DEFAULT_CATALOG)
    state = container.get()
    assert state.selection == {"svc-certified-copy"}
    assert state.document_count() == 0


def test_multi_value_param_resolves_each_value(
    resolver: ExternalParameterResolver, container: FormStateContainer
) -> None:
    outcome = resolver.apply_service_param("SIG,apostille-hague,unknown-service", DEFAULT_CATALOG)

    assert outcome.applied
    assert outcome.unmatched == ("unknown-service",)
    assert container.get().selection == {"svc-signature", "svc-apostille"}


def test_unmatched_value_is_marked_and_not_retried(
    resolver: ExternalParameterResolver, container: FormStateContainer, completed: CompletedSteps
) -> None:
    outcome = resolver.apply_service_param("wedding-planning", DEFAULT_CATALOG)

    assert not outcome.applied
    assert outcome.unmatched == ("wedding-planning",)
    state = container.get()
    assert state.selection == set()
    assert state.meta.last_applied_external_param == "wedding-planning"
    assert 1 not in completed
    assert resolver.apply_service_param("wedding-planning", DEFAULT_CATALOG).unmatched == ()


def test_resolver_waits_for_catalog(resolver: ExternalParameterResolver, container: FormStateContainer) -> None:
    outcome = resolver.apply_service_param("SIG", None)

    assert outcome.pending
    assert container.get().meta.last_applied_external_param is None

    assert resolver.apply_service_param("SIG", DEFAULT_CATALOG).applied


def test_currency_param_applies_once_per_value(
    resolver: ExternalParameterResolver, container: FormStateContainer, store: KeyedStore
) -> None:
    assert resolver.apply_currency_param("usd") == "USD"
    assert container.get().commerce.currency_code == "USD"
    assert store.read(StorageKeys.CURRENCY_PREFERENCE) == "USD"

    container.set({"commerce": {"currency_code": "GBP"}})
    assert resolver.apply_currency_param("USD") is None
    assert container.get().commerce.currency_code == "GBP"


def test_unsupported_currency_param_is_ignored(
    resolver: ExternalParameterResolver, container: FormStateContainer
) -> None:
    assert resolver.apply_currency_param("XYZ") is None
    assert container.get().commerce.currency_code == "EUR"


def test_query_applies_all_parameters(resolver: ExternalParameterResolver, container: FormStateContainer) -> None:
    outcome = resolver.apply_query({"service": "CTC", "currency": "gbp", "gclid": "abc123"}, DEFAULT_CATALOG)

    state: FormState = container.get()
    assert outcome.applied
    assert state.selection == {"svc-certified-copy"}
    assert state.commerce.currency_code == "GBP"
    assert state.commerce.ad_click_id == "abc123"
    assert not resolver.apply_ad_click_id("abc123")
