# app.py: Notary intake wizard (entrypoint)
from __future__ import annotations

from html import escape
from pathlib import Path
import sys
from typing import Final

import streamlit as st

APP_ROOT = Path(__file__).resolve().parent
for candidate in (APP_ROOT, APP_ROOT.parent):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from config import HTTP_TIMEOUT_SECONDS, PUBLIC_BASE_URL  # noqa: E402
from constants.keys import QueryParams, StateKeys, UIKeys  # noqa: E402
from core.errors import STORAGE_NOTICE_MESSAGE, STORAGE_QUOTA_MESSAGE  # noqa: E402
from pricing.currency import SUPPORTED_CURRENCIES  # noqa: E402
from utils.i18n import (  # noqa: E402
    BACK_BUTTON_LABEL,
    CONTINUE_BUTTON_LABEL,
    DEFAULT_LANGUAGE,
    START_OVER_LABEL,
    LocalizedText,
    tr,
    tr_pair,
)
from utils.logging_context import configure_logging, log_context  # noqa: E402
from utils.telemetry import setup_tracing  # noqa: E402
from wizard.navigation_controller import TransitionResult  # noqa: E402
from wizard.session import WizardSession, build_session, is_valid_draft_id, new_draft_id  # noqa: E402
from wizard.step_graph import STEP_COUNT, WIZARD_STEPS, step_by_ordinal, terminal_step  # noqa: E402
from wizard.views import render_step  # noqa: E402

APP_VERSION = "0.1.0"
ARRIVED_STATE_KEY: Final[str] = "wizard.arrived"
_FORWARDED_PARAMS: Final[tuple[str, ...]] = (
    QueryParams.SERVICE,
    QueryParams.CURRENCY,
    QueryParams.AD_CLICK_ID,
    QueryParams.CHECKOUT,
    QueryParams.CHECKOUT_SESSION,
)

configure_logging()
setup_tracing()

st.set_page_config(
    page_title="Notary intake",
    page_icon="🖋️",
    layout="centered",
    initial_sidebar_state="collapsed",
)
st.session_state.setdefault("lang", DEFAULT_LANGUAGE)
st.session_state.setdefault("app_version", APP_VERSION)


def _current_session() -> WizardSession:
    """Return the session of the draft named in the URL, opening it if needed."""

    draft_id = st.query_params.get(QueryParams.DRAFT)
    if not is_valid_draft_id(draft_id):
        draft_id = new_draft_id()
        st.query_params[QueryParams.DRAFT] = draft_id
    session: WizardSession | None = st.session_state.get(StateKeys.WIZARD_SESSION)
    if session is not None and session.draft_id == draft_id:
        return session
    if session is not None:
        session.close()
    session = build_session(draft_id)
    st.session_state[StateKeys.WIZARD_SESSION] = session
    st.session_state.pop(ARRIVED_STATE_KEY, None)
    return session


def _return_url(session: WizardSession, status: str) -> str:
    return (
        f"{PUBLIC_BASE_URL}/?{QueryParams.DRAFT}={session.draft_id}"
        f"&{QueryParams.STEP}={terminal_step().key}&{QueryParams.CHECKOUT}={status}"
    )


def _show_result(result: TransitionResult) -> None:
    st.query_params[QueryParams.STEP] = result.step.key
    if result.error is not None:
        st.session_state[StateKeys.TRANSITION_ERROR] = result.error
    else:
        st.session_state.pop(StateKeys.TRANSITION_ERROR, None)
    if result.notice is not None:
        st.session_state[StateKeys.FLASH_MESSAGE] = result.notice
    if result.redirect_url:
        st.session_state[StateKeys.CHECKOUT_REDIRECT] = result.redirect_url


def _arrive(session: WizardSession) -> None:
    query = {name: st.query_params.get(name) for name in _FORWARDED_PARAMS}
    wait = HTTP_TIMEOUT_SECONDS if query[QueryParams.SERVICE] else 0
    outcome = session.apply_query(query, timeout=wait)
    requested = st.query_params.get(QueryParams.STEP)
    if outcome.navigate_to is not None:
        requested = step_by_ordinal(outcome.navigate_to).key
    first_arrival = not st.session_state.get(ARRIVED_STATE_KEY)
    result = session.controller.arrive(requested, query, deep_link=first_arrival)
    st.session_state[ARRIVED_STATE_KEY] = True
    for name in (QueryParams.CHECKOUT, QueryParams.CHECKOUT_SESSION):
        if name in st.query_params:
            del st.query_params[name]
    if result.notice is not None:
        st.session_state[StateKeys.FLASH_MESSAGE] = result.notice
    st.query_params[QueryParams.STEP] = result.step.key


def _render_sidebar(session: WizardSession) -> None:
    with st.sidebar:
        st.selectbox(
            tr("Langue", "Language"),
            options=["fr", "en"],
            format_func=lambda code: {"fr": "Français", "en": "English"}[code],
            key="lang",
        )
        currency = session.state.commerce.currency_code
        if st.session_state.get(UIKeys.CURRENCY_SELECT) != currency:
            st.session_state[UIKeys.CURRENCY_SELECT] = currency
        st.selectbox(
            tr("Devise", "Currency"),
            options=list(SUPPORTED_CURRENCIES),
            key=UIKeys.CURRENCY_SELECT,
            on_change=lambda: session.set_currency(st.session_state[UIKeys.CURRENCY_SELECT]),
        )
        st.divider()
        st.button(
            tr_pair(START_OVER_LABEL),
            key="ui.start_over",
            on_click=lambda: _show_result(session.controller.start_over()),
        )


def _render_storage_notice(session: WizardSession) -> None:
    failure = session.storage_failure
    if failure is None or st.session_state.get(UIKeys.STORAGE_NOTICE_DISMISSED) == failure.kind:
        return
    message: LocalizedText = STORAGE_QUOTA_MESSAGE if failure.is_quota else STORAGE_NOTICE_MESSAGE
    columns = st.columns([6, 1])
    columns[0].warning(tr_pair(message))
    if columns[1].button("✕", key="ui.storage_notice.dismiss"):
        st.session_state[UIKeys.STORAGE_NOTICE_DISMISSED] = failure.kind
        st.rerun()


def _render_progress(session: WizardSession) -> None:
    current = session.controller.current_step
    completed = session.completed.snapshot()
    st.progress(current.ordinal / STEP_COUNT)
    labels = []
    for step in WIZARD_STEPS:
        text = escape(tr_pair(step.label))
        if step.ordinal == current.ordinal:
            labels.append(f"**{text}**")
        elif step.ordinal in completed:
            labels.append(f"✓ {text}")
        else:
            labels.append(text)
    st.caption(" › ".join(labels))


def _render_navigation(session: WizardSession) -> None:
    controller = session.controller
    step = controller.current_step
    back, forward = st.columns(2)
    back.button(
        tr_pair(BACK_BUTTON_LABEL),
        key="ui.nav.back",
        disabled=step.ordinal == 1,
        on_click=lambda: _show_result(controller.go_back()),
        use_container_width=True,
    )
    if step.ordinal == terminal_step().ordinal:
        forward.button(
            tr("Payer", "Pay"),
            key="ui.nav.checkout",
            type="primary",
            on_click=lambda: _show_result(
                controller.begin_checkout(
                    success_url=_return_url(session, "success"),
                    cancel_url=_return_url(session, "cancel"),
                )
            ),
            use_container_width=True,
        )
    else:
        forward.button(
            tr_pair(CONTINUE_BUTTON_LABEL),
            key="ui.nav.next",
            type="primary",
            disabled=step.ordinal == 2 and session.uploads.is_uploading(),
            on_click=lambda: _show_result(controller.advance()),
            use_container_width=True,
        )


def _render_checkout_redirect() -> None:
    url = st.session_state.pop(StateKeys.CHECKOUT_REDIRECT, None)
    if not url:
        return
    st.markdown(f'<meta http-equiv="refresh" content="0; url={escape(url, quote=True)}">', unsafe_allow_html=True)
    st.link_button(tr("Continuer vers le paiement", "Continue to payment"), url, type="primary")
    st.stop()


def main() -> None:
    session = _current_session()
    with log_context(session_id=session.state.meta.session_id):
        _arrive(session)
        _render_checkout_redirect()
        _render_sidebar(session)
        st.title(tr("Demande de prestation notariale", "Notary service request"))
        _render_storage_notice(session)

        notice = st.session_state.pop(StateKeys.FLASH_MESSAGE, None)
        if notice:
            st.success(tr_pair(notice))
        error = st.session_state.pop(StateKeys.TRANSITION_ERROR, None)
        if error:
            st.error(tr_pair(error))

        _render_progress(session)
        render_step(session)
        _render_navigation(session)


main()
