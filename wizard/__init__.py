"""Intake wizard: step graph, navigation guard and step transitions."""

from __future__ import annotations

from .guard import Arrival, ArrivalKind, GuardDecision, evaluate
from .step_graph import STEP_COUNT, WIZARD_STEPS, StepDefinition

__all__ = [
    "Arrival",
    "ArrivalKind",
    "GuardDecision",
    "STEP_COUNT",
    "StepDefinition",
    "WIZARD_STEPS",
    "evaluate",
]
