"""Merge URL query parameters into the draft exactly once per distinct value.

``service`` preselects catalog items, ``currency`` switches the display
currency and ``gclid`` records the ad click id. Catalog matching normalizes
both sides and checks candidate fields in a fixed precedence; exact matches
always beat prefix matches.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Callable, Final, Mapping, Sequence

from constants.keys import QueryParams, StorageKeys
from models.catalog import Catalog, CatalogItem
from models.form_state import FormState
from pricing.currency import normalize_currency_code
from state.form_store import CompletedSteps, FormStateContainer
from state.keyed_store import KeyedStore

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

CandidateExtractor = Callable[[CatalogItem], "str | None"]

CANDIDATE_FIELDS: Final[tuple[tuple[str, CandidateExtractor], ...]] = (
    ("slug", lambda item: item.slug),
    ("code", lambda item: item.code),
    ("key", lambda item: item.key),
    ("url_key", lambda item: item.url_key),
    ("name", lambda item: item.name),
    ("id", lambda item: item.id),
)


def normalize_slug(value: str) -> str:
    """Return ``value`` as a lower-case, diacritic-free, dash-separated slug.

    >>> normalize_slug("  Légalisation d'Acte ")
    'legalisation-d-acte'
    """

    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("-", stripped.strip().lower()).strip("-")


def split_param_values(raw: str) -> list[str]:
    """Split a comma separated parameter, dropping blanks and duplicates."""

    values: list[str] = []
    for part in raw.split(","):
        cleaned = part.strip()
        if cleaned and cleaned not in values:
            values.append(cleaned)
    return values


@dataclass(frozen=True)
class CatalogMatch:
    item: CatalogItem
    field: str
    exact: bool


def match_catalog(value: str, items: Sequence[CatalogItem]) -> list[CatalogMatch]:
    """Return catalog matches for ``value`` in precedence order.

    Exact matches are returned when any exist; otherwise prefix matches
    (``candidate`` starting with ``value-``).
    """

    target = normalize_slug(value)
    if not target:
        return []
    for exact in (True, False):
        matches: list[CatalogMatch] = []
        seen: set[str] = set()
        for field_name, extract in CANDIDATE_FIELDS:
            for item in items:
                raw = extract(item)
                if not raw or item.id in seen:
                    continue
                candidate = normalize_slug(raw)
                hit = candidate == target if exact else candidate.startswith(f"{target}-")
                if hit:
                    matches.append(CatalogMatch(item=item, field=field_name, exact=exact))
                    seen.add(item.id)
        if matches:
            return matches
    return []


def resolve_single(value: str, items: Sequence[CatalogItem]) -> CatalogItem | None:
    """Return the first match for ``value`` and warn when it is ambiguous."""

    matches = match_catalog(value, items)
    if not matches:
        return None
    if len(matches) > 1:
        logger.warning(
            "Catalog parameter %r matches %d items (%s); using %s",
            value,
            len(matches),
            ", ".join(match.item.id for match in matches),
            matches[0].item.id,
        )
    return matches[0].item


@dataclass(frozen=True)
class ResolverOutcome:
    """Result of applying the ``service`` parameter."""

    applied: bool = False
    pending: bool = False
    selection: frozenset[str] = frozenset()
    unmatched: tuple[str, ...] = ()
    navigate_to: int | None = None


class ExternalParameterResolver:
    """Apply URL parameters to the draft at most once per distinct value."""

    def __init__(
        self,
        container: FormStateContainer,
        completed: CompletedSteps,
        store: KeyedStore,
    ) -> None:
        self._container = container
        self._completed = completed
        self._store = store

    def apply_query(self, query: Mapping[str, str | None], catalog: Catalog | None) -> ResolverOutcome:
        """Apply every recognized parameter of ``query``."""

        self.apply_currency_param(query.get(QueryParams.CURRENCY))
        self.apply_ad_click_id(query.get(QueryParams.AD_CLICK_ID))
        return self.apply_service_param(query.get(QueryParams.SERVICE), catalog)

    def apply_service_param(self, raw: str | None, catalog: Catalog | None) -> ResolverOutcome:
        if raw is None or not raw.strip():
            return ResolverOutcome()
        marker = raw.strip()
        if self._container.get().meta.last_applied_external_param == marker:
            return ResolverOutcome()
        if catalog is None or not catalog.items:
            logger.debug("Catalog not loaded yet; deferring service parameter %r", marker)
            return ResolverOutcome(pending=True)

        matched: list[str] = []
        unmatched: list[str] = []
        for value in split_param_values(marker):
            item = resolve_single(value, catalog.items)
            if item is None:
                unmatched.append(value)
            elif item.id not in matched:
                matched.append(item.id)
        if unmatched:
            logger.warning("No catalog item matches %s", ", ".join(repr(value) for value in unmatched))

        applied = False

        def _apply(current: FormState) -> FormState:
            nonlocal applied
            if current.meta.last_applied_external_param == marker:
                return current
            meta = current.meta.model_copy(update={"last_applied_external_param": marker})
            applied = True
            if not matched:
                return current.model_copy(update={"meta": meta})
            selection = set(matched)
            keep_documents = selection == current.selection and current.document_count() > 0
            documents = current.documents_by_selection if keep_documents else {}
            return current.model_copy(
                update={"selection": selection, "documents_by_selection": documents, "meta": meta}
            )

        committed = self._container.set(_apply)
        if not applied or not matched:
            return ResolverOutcome(unmatched=tuple(unmatched))
        self._completed.mark(1)
        logger.info("Preselected %s from service parameter", ", ".join(sorted(committed.selection)))
        return ResolverOutcome(
            applied=True,
            selection=frozenset(committed.selection),
            unmatched=tuple(unmatched),
            navigate_to=2,
        )

    def apply_currency_param(self, raw: str | None) -> str | None:
        """Switch the currency once per distinct parameter value."""

        if raw is None or not raw.strip():
            return None
        marker = raw.strip().upper()
        if self._container.get().meta.last_applied_currency_param == marker:
            return None
        code = normalize_currency_code(marker)
        if code is None:
            logger.warning("Ignoring unsupported currency parameter %r", raw)

        def _apply(current: FormState) -> FormState:
            if current.meta.last_applied_currency_param == marker:
                return current
            update: dict[str, object] = {
                "meta": current.meta.model_copy(update={"last_applied_currency_param": marker})
            }
            if code is not None:
                update["commerce"] = current.commerce.model_copy(update={"currency_code": code})
            return current.model_copy(update=update)

        self._container.set(_apply)
        if code is not None:
            self._store.write(StorageKeys.CURRENCY_PREFERENCE, code)
        return code

    def apply_ad_click_id(self, raw: str | None) -> bool:
        if raw is None or not raw.strip():
            return False
        click_id = raw.strip()
        if self._container.get().commerce.ad_click_id == click_id:
            return False
        self._container.set({"commerce": {"ad_click_id": click_id}})
        return True


__all__ = [
    "CANDIDATE_FIELDS",
    "CatalogMatch",
    "ExternalParameterResolver",
    "ResolverOutcome",
    "match_catalog",
    "normalize_slug",
    "resolve_single",
    "split_param_values",
]
