from __future__ import annotations

from itertools import chain, combinations

import pytest

from models.form_state import Contact, DeliveryMethod, DocumentRecord, FormState
from wizard.guard import (
    Arrival,
    ArrivalKind,
    GuardAction,
    evaluate,
    is_reachable,
    resume_ordinal,
)
from wizard.step_graph import STEP_COUNT


def _complete_state(**overrides: object) -> FormState:
    base: dict[str, object] = {
        "selection": {"svc-signature"},
        "documents_by_selection": {"svc-signature": [DocumentRecord(name="deed.pdf")]},
        "delivery": DeliveryMethod.POSTAL,
        "contact": Contact(first_name="Ana", last_name="Silva", address="1 Rue de Rivoli", authenticated=True),
    }
    base.update(overrides)
    return FormState(**base)


def _subsets(values: range) -> list[frozenset[int]]:
    items = list(values)
    return [frozenset(combo) for combo in chain.from_iterable(combinations(items, size) for size in range(len(items) + 1))]


ALL_COMPLETED_SETS = _subsets(range(1, STEP_COUNT))


def test_reachability_is_monotone_in_completed_steps() -> None:
    for completed in ALL_COMPLETED_SETS:
        for bigger in ALL_COMPLETED_SETS:
            if not completed <= bigger:
                continue
            for target in range(1, STEP_COUNT + 1):
                if is_reachable(target, completed):
                    assert is_reachable(target, bigger), (target, completed, bigger)


def test_guard_allows_are_monotone_for_fixed_state() -> None:
    state = _complete_state(delivery=DeliveryMethod.UNSET)
    for completed in ALL_COMPLETED_SETS:
        for bigger in ALL_COMPLETED_SETS:
            if not completed <= bigger:
                continue
            for target in range(1, STEP_COUNT):
                allowed = evaluate(Arrival(target), state, completed).action is GuardAction.ALLOW
                if allowed:
                    assert evaluate(Arrival(target), state, bigger).action is GuardAction.ALLOW


def test_step_one_is_always_reachable() -> None:
    decision = evaluate(Arrival(1), FormState(), frozenset())

    assert decision.action is GuardAction.ALLOW
    assert decision.target == 1
    assert not decision.backfill


def test_next_step_after_completed_one_is_allowed() -> None:
    decision = evaluate(Arrival(3), _complete_state(), frozenset({1, 2}))

    assert decision.action is GuardAction.ALLOW
    assert decision.target == 3


def test_skipping_ahead_redirects_to_resume_step() -> None:
    decision = evaluate(Arrival(4), _complete_state(), frozenset({1}))

    assert decision.is_redirect
    assert decision.target == 2
    assert resume_ordinal(frozenset({1})) == 2
    assert resume_ordinal(frozenset()) == 1


def test_unknown_step_redirects_to_resume_step() -> None:
    decision = evaluate(Arrival(0), FormState(), frozenset({1, 2}))

    assert decision.is_redirect
    assert decision.target == 3


def test_terminal_self_heals_when_all_predicates_pass() -> None:
    state = _complete_state()

    first = evaluate(Arrival(STEP_COUNT), state, frozenset())

    assert first.action is GuardAction.ALLOW
    assert first.backfill == frozenset({1, 2, 3, 4})

    healed = frozenset() | first.backfill
    second = evaluate(Arrival(STEP_COUNT), state, healed)
    assert second.action is GuardAction.ALLOW
    assert second.backfill == frozenset()


def test_terminal_with_delivery_unset_lands_on_delivery_step() -> None:
    state = _complete_state(delivery=DeliveryMethod.UNSET)

    decision = evaluate(Arrival(STEP_COUNT), state, frozenset({1}))

    assert decision.is_redirect
    assert decision.target == 3
    assert decision.backfill == frozenset({2})
    # The redirect target is reachable once the backfill is applied.
    assert is_reachable(decision.target, frozenset({1}) | decision.backfill)


def test_terminal_with_empty_selection_lands_on_step_one() -> None:
    decision = evaluate(Arrival(STEP_COUNT), FormState(), frozenset())

    assert decision.is_redirect
    assert decision.target == 1
    assert decision.backfill == frozenset()


def test_deep_link_to_first_step_resumes_preselected_draft() -> None:
    state = _complete_state()

    deep = evaluate(Arrival(1, ArrivalKind.DEEP_LINK), state, frozenset({1}))
    route = evaluate(Arrival(1, ArrivalKind.ROUTE), state, frozenset({1}))

    assert deep.is_redirect and deep.target == 2
    assert route.action is GuardAction.ALLOW and route.target == 1


def test_checkout_success_clears_progress() -> None:
    decision = evaluate(Arrival(STEP_COUNT, ArrivalKind.CHECKOUT_SUCCESS), _complete_state(), frozenset({1, 2, 3, 4}))

    assert decision.clear_progress
    assert decision.target == 1


def test_checkout_cancel_requests_rehydration() -> None:
    decision = evaluate(Arrival(STEP_COUNT, ArrivalKind.CHECKOUT_CANCEL), FormState(), frozenset())

    assert decision.rehydrate
    assert not decision.clear_progress
    assert decision.target == STEP_COUNT


@pytest.mark.parametrize("target", [1, 2, 3, 4, 5, 99, -1])
def test_evaluation_never_redirects_more_than_once(target: int) -> None:
    state = _complete_state(delivery=DeliveryMethod.UNSET)
    completed = frozenset({1})

    decision = evaluate(Arrival(target), state, completed)
    applied = completed | decision.backfill
    follow_up = evaluate(Arrival(decision.target), state, applied)

    assert follow_up.action is GuardAction.ALLOW
