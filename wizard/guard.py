"""Pure navigation guard deciding whether a requested step may be shown.

``evaluate`` performs no I/O and never raises. The navigation controller
applies the returned :class:`GuardDecision` (clearing, rehydrating,
backfilling completed steps, redirecting).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import AbstractSet

from models.form_state import FormState
from wizard.step_graph import STEP_COUNT, first_incomplete_step, terminal_step

logger = logging.getLogger(__name__)


class ArrivalKind(StrEnum):
    """How the user reached the requested step."""

    ROUTE = "route"
    DEEP_LINK = "deep_link"
    CHECKOUT_SUCCESS = "checkout_success"
    CHECKOUT_CANCEL = "checkout_cancel"


class GuardAction(StrEnum):
    ALLOW = "allow"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class Arrival:
    target: int
    kind: ArrivalKind = ArrivalKind.ROUTE


@dataclass(frozen=True)
class GuardDecision:
    """Outcome of one guard evaluation; at most one redirect."""

    action: GuardAction
    target: int
    backfill: frozenset[int] = field(default_factory=frozenset)
    clear_progress: bool = False
    rehydrate: bool = False
    reason: str = ""

    @property
    def is_redirect(self) -> bool:
        return self.action is GuardAction.REDIRECT


def _allow(target: int, **kwargs: object) -> GuardDecision:
    return GuardDecision(GuardAction.ALLOW, target, **kwargs)  # type: ignore[arg-type]


def _redirect(target: int, **kwargs: object) -> GuardDecision:
    return GuardDecision(GuardAction.REDIRECT, target, **kwargs)  # type: ignore[arg-type]


def is_reachable(ordinal: int, completed: AbstractSet[int], *, step_count: int = STEP_COUNT) -> bool:
    """Return ``True`` when ``ordinal`` may be entered given ``completed``."""

    if ordinal == 1:
        return True
    if ordinal - 1 in completed:
        return True
    return ordinal == step_count and all(prior in completed for prior in range(1, step_count))


def resume_ordinal(completed: AbstractSet[int], *, step_count: int = STEP_COUNT) -> int:
    """Return the step after the furthest completed one."""

    known = [ordinal for ordinal in completed if 1 <= ordinal <= step_count]
    if not known:
        return 1
    return min(max(known) + 1, step_count)


def evaluate(arrival: Arrival, state: FormState, completed: AbstractSet[int]) -> GuardDecision:
    """Decide whether ``arrival`` may proceed under ``state`` and ``completed``."""

    try:
        return _evaluate(arrival, state, completed)
    except Exception:  # pragma: no cover - predicates are pure
        logger.exception("Navigation guard failed for %s; falling back to step 1", arrival)
        return _redirect(1, reason="guard-error") if arrival.target != 1 else _allow(1, reason="guard-error")


def _evaluate(arrival: Arrival, state: FormState, completed: AbstractSet[int]) -> GuardDecision:
    if arrival.kind is ArrivalKind.CHECKOUT_SUCCESS:
        if arrival.target == 1:
            return _allow(1, clear_progress=True, reason="checkout-success")
        return _redirect(1, clear_progress=True, reason="checkout-success")

    if arrival.kind is ArrivalKind.CHECKOUT_CANCEL:
        return _allow(arrival.target, rehydrate=True, reason="checkout-cancel")

    target = arrival.target
    if not 1 <= target <= STEP_COUNT:
        return _redirect(resume_ordinal(completed), reason="unknown-step")

    if arrival.kind is ArrivalKind.DEEP_LINK and target == 1 and state.selection and 1 in completed:
        return _redirect(2, reason="resume-preselected")

    if is_reachable(target, completed):
        return _allow(target)

    terminal = terminal_step()
    if target == terminal.ordinal:
        failing = first_incomplete_step(state)
        if failing.ordinal == terminal.ordinal:
            backfill = frozenset(range(1, terminal.ordinal)) - completed
            return _allow(target, backfill=backfill, reason="self-heal")
        backfill = frozenset(range(1, failing.ordinal)) - completed
        return _redirect(failing.ordinal, backfill=backfill, reason=f"incomplete:{failing.key}")

    return _redirect(resume_ordinal(completed), reason="unreachable")


__all__ = [
    "Arrival",
    "ArrivalKind",
    "GuardAction",
    "GuardDecision",
    "evaluate",
    "is_reachable",
    "resume_ordinal",
]
