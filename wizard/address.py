"""Deferred, race-safe merge of address lookups into ``contact``."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor

from config import LOOKUP_WORKERS
from core.errors import LookupFailure
from integrations.geocoding import AddressLookup, AddressLookupResult
from models.form_state import FormState
from state.form_store import FormStateContainer

logger = logging.getLogger(__name__)

_FILLABLE_FIELDS: tuple[str, ...] = ("city", "postal_code", "country", "time_zone", "latitude", "longitude")


def merge_address_lookup(state: FormState, queried_address: str, result: AddressLookupResult) -> FormState:
    """Return ``state`` with lookup fields filled in.

    The result is dropped when the user edited the address after the query was
    sent. Only empty fields are filled, so manual entries always win.
    """

    contact = state.contact
    if contact.address.strip() != queried_address.strip():
        logger.debug("Address changed during lookup; discarding result")
        return state
    updates: dict[str, object] = {}
    if result.formatted_address and result.formatted_address != contact.address:
        updates["address"] = result.formatted_address
    for name in _FILLABLE_FIELDS:
        value = getattr(result, name)
        if value in (None, ""):
            continue
        if getattr(contact, name) in (None, ""):
            updates[name] = value
    if not updates:
        return state
    updates["address_auto_populated"] = True
    return state.model_copy(update={"contact": contact.model_copy(update=updates)})


class AddressAutofill:
    def __init__(
        self,
        container: FormStateContainer,
        lookup: AddressLookup,
        *,
        executor: Executor | None = None,
    ) -> None:
        self._container = container
        self._lookup = lookup
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=LOOKUP_WORKERS, thread_name_prefix="geocode")

    def request(self, address: str) -> Future[bool]:
        """Look ``address`` up in the background; resolve ``True`` when fields were filled."""

        return self._executor.submit(self._run, address)

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _run(self, address: str) -> bool:
        if not address.strip():
            return False
        try:
            result = self._lookup.lookup(free_text=address)
        except LookupFailure as exc:
            logger.info("Address autofill skipped: %s", exc)
            return False
        changed = False

        def _merge(current: FormState) -> FormState:
            nonlocal changed
            merged = merge_address_lookup(current, address, result)
            changed = merged is not current
            return merged

        self._container.set(_merge)
        return changed


__all__ = ["AddressAutofill", "merge_address_lookup"]
