"""Fixed step graph of the intake wizard and its completion predicates."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

from email_validator import EmailNotValidError, validate_email

from models.form_state import DeliveryMethod, FormState
from state.autosave import FunnelStatus
from utils.i18n import LocalizedText

StepPredicate = Callable[[FormState], bool]

MIN_PASSWORD_LENGTH: Final[int] = 8


@dataclass(frozen=True)
class StepDefinition:
    """Identity, route and completion contract of one wizard step."""

    ordinal: int
    key: str
    label: LocalizedText
    is_complete: StepPredicate
    completion_status: FunnelStatus
    requires_account: bool = False

    @property
    def path(self) -> str:
        return f"/{self.key}"


def _has_selection(state: FormState) -> bool:
    return bool(state.selection)


def _every_selection_has_documents(state: FormState) -> bool:
    if not state.selection:
        return False
    return all(state.documents_by_selection.get(item_id) for item_id in state.selection)


def _delivery_is_set(state: FormState) -> bool:
    return state.delivery is not DeliveryMethod.UNSET


def is_well_formed_email(value: str) -> bool:
    if not value:
        return False
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _personal_info_complete(state: FormState) -> bool:
    contact = state.contact
    if not (contact.first_name and contact.last_name and contact.address):
        return False
    if contact.authenticated:
        return True
    if not is_well_formed_email(contact.email):
        return False
    return len(contact.password) >= MIN_PASSWORD_LENGTH and contact.password == contact.password_confirmation


def _upstream_complete(state: FormState) -> bool:
    return all(step.is_complete(state) for step in WIZARD_STEPS[:-1])


WIZARD_STEPS: Final[tuple[StepDefinition, ...]] = (
    StepDefinition(
        ordinal=1,
        key="choose-services",
        label=("Services", "Services"),
        is_complete=_has_selection,
        completion_status=FunnelStatus.SERVICES_SELECTED,
    ),
    StepDefinition(
        ordinal=2,
        key="documents",
        label=("Documents", "Documents"),
        is_complete=_every_selection_has_documents,
        completion_status=FunnelStatus.DOCUMENTS_UPLOADED,
    ),
    StepDefinition(
        ordinal=3,
        key="delivery",
        label=("Livraison", "Delivery"),
        is_complete=_delivery_is_set,
        completion_status=FunnelStatus.DELIVERY_METHOD_SELECTED,
    ),
    StepDefinition(
        ordinal=4,
        key="personal-info",
        label=("Vos informations", "Personal details"),
        is_complete=_personal_info_complete,
        completion_status=FunnelStatus.PERSONAL_INFO_COMPLETED,
        requires_account=True,
    ),
    StepDefinition(
        ordinal=5,
        key="summary",
        label=("Récapitulatif", "Summary"),
        is_complete=_upstream_complete,
        completion_status=FunnelStatus.PAYMENT_PENDING,
    ),
)

STEP_COUNT: Final[int] = len(WIZARD_STEPS)


def terminal_step() -> StepDefinition:
    return WIZARD_STEPS[-1]


def step_by_ordinal(ordinal: int) -> StepDefinition:
    """Return the step with ``ordinal``; raise ``KeyError`` when out of range."""

    if 1 <= ordinal <= STEP_COUNT:
        return WIZARD_STEPS[ordinal - 1]
    raise KeyError(ordinal)


def step_by_key(key: str | None) -> StepDefinition | None:
    if not key:
        return None
    normalized = key.strip().strip("/").lower()
    for step in WIZARD_STEPS:
        if step.key == normalized:
            return step
    return None


def first_incomplete_step(state: FormState) -> StepDefinition:
    """Return the first step whose predicate fails, or the terminal step."""

    for step in WIZARD_STEPS[:-1]:
        if not step.is_complete(state):
            return step
    return terminal_step()


__all__ = [
    "MIN_PASSWORD_LENGTH",
    "STEP_COUNT",
    "StepDefinition",
    "WIZARD_STEPS",
    "first_incomplete_step",
    "is_well_formed_email",
    "step_by_key",
    "step_by_ordinal",
    "terminal_step",
]
