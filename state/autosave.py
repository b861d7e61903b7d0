"""Snapshot and funnel helpers for mirroring drafts to the remote record."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Collection, Mapping

from models.form_state import FormState


AutosavePayload = dict[str, Any]


class FunnelStatus(StrEnum):
    """Progress milestones of a draft, in funnel order."""

    STARTED = "started"
    SERVICES_SELECTED = "services_selected"
    DOCUMENTS_UPLOADED = "documents_uploaded"
    DELIVERY_METHOD_SELECTED = "delivery_method_selected"
    PERSONAL_INFO_COMPLETED = "personal_info_completed"
    SUMMARY_VIEWED = "summary_viewed"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_COMPLETED = "payment_completed"

    @property
    def rank(self) -> int:
        return _FUNNEL_ORDER.index(self)


_FUNNEL_ORDER: tuple[FunnelStatus, ...] = tuple(FunnelStatus)


def coerce_funnel_status(value: object) -> FunnelStatus | None:
    if isinstance(value, FunnelStatus):
        return value
    if isinstance(value, str):
        try:
            return FunnelStatus(value.strip().lower())
        except ValueError:
            return None
    return None


def advance_funnel(current: object, proposed: FunnelStatus) -> FunnelStatus:
    """Return the later of ``current`` and ``proposed``; the funnel never moves back."""

    existing = coerce_funnel_status(current)
    if existing is None or proposed.rank > existing.rank:
        return proposed
    return existing


def build_snapshot(
    state: FormState,
    *,
    completed_steps: Collection[int] = (),
    current_step: str | None = None,
    total_price: float | None = None,
    funnel_status: FunnelStatus = FunnelStatus.STARTED,
) -> AutosavePayload:
    """Return the payload upserted to the remote record.

    Password fields are excluded by the model; documents carry only storage
    references and metadata.
    """

    meta: dict[str, Any] = {"captured_at": datetime.now(timezone.utc).isoformat()}
    if current_step:
        meta["current_step"] = current_step
    snapshot: AutosavePayload = {
        "session_id": state.meta.session_id,
        "form": state.to_storage(),
        "completed_steps": sorted(completed_steps),
        "currency": state.commerce.currency_code,
        "funnel_status": funnel_status.value,
        "meta": meta,
    }
    if state.commerce.ad_click_id:
        snapshot["gclid"] = state.commerce.ad_click_id
    if total_price is not None:
        snapshot["total_price"] = total_price
    return snapshot


def snapshot_funnel_status(snapshot: Mapping[str, Any]) -> FunnelStatus:
    return coerce_funnel_status(snapshot.get("funnel_status")) or FunnelStatus.STARTED


__all__ = [
    "AutosavePayload",
    "FunnelStatus",
    "advance_funnel",
    "build_snapshot",
    "coerce_funnel_status",
    "snapshot_funnel_status",
]
