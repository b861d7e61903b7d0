"""Streamlit renderers for the five wizard steps.

Widgets commit straight into the session's container; the container stays the
source of truth and widget values are re-seeded from it before each render so
background updates (uploads, address lookups) show up on the next rerun.
"""

from __future__ import annotations

from typing import Callable

import streamlit as st

from config import HTTP_TIMEOUT_SECONDS
from constants.keys import UIKeys
from models.catalog import CatalogItem
from models.form_state import DeliveryMethod
from pricing.currency import format_amount
from pricing.totals import POSTAL_DELIVERY_PRICE_EUR
from utils.i18n import UPLOADING_HINT, tr, tr_pair
from wizard.documents import UploadRequest
from wizard.session import WizardSession
from wizard.step_graph import MIN_PASSWORD_LENGTH

StepRenderer = Callable[[WizardSession], None]


def _price_text(session: WizardSession, amount_eur: float, override: float | None = None) -> str:
    """Return a display price that never regresses to a worse estimate."""

    currency = session.projector.currency
    if override is not None:
        return format_amount(override, currency)
    session.projector.format_async(amount_eur)
    return session.projector.format_sync(amount_eur)


def _item_label(session: WizardSession, item: CatalogItem) -> str:
    price = _price_text(session, item.base_price, item.price_override(session.projector.currency))
    return f"{item.name} · {price}"


def render_services(session: WizardSession) -> None:
    st.subheader(tr("Quels services souhaitez-vous ?", "Which services do you need?"))
    catalog = session.catalog(timeout=HTTP_TIMEOUT_SECONDS)
    if catalog is None:
        st.warning(tr("Le catalogue n'est pas disponible pour le moment.", "The catalog is unavailable right now."))
        if st.button(tr("Réessayer", "Retry"), key="ui.services.retry"):
            session.load_catalog()
            st.rerun()
        return

    state = session.state
    items = {item.id: item for item in catalog.items}
    selected = [item_id for item_id in sorted(state.selection) if item_id in items]
    if st.session_state.get(UIKeys.SERVICE_SELECT) != selected:
        st.session_state[UIKeys.SERVICE_SELECT] = selected

    def _commit() -> None:
        session.container.set({"selection": set(st.session_state[UIKeys.SERVICE_SELECT])})

    st.multiselect(
        tr("Services", "Services"),
        options=list(items),
        format_func=lambda item_id: _item_label(session, items[item_id]),
        key=UIKeys.SERVICE_SELECT,
        on_change=_commit,
    )


def _uploader_key(item_id: str) -> str:
    nonce = st.session_state.setdefault(f"{UIKeys.DOCUMENT_UPLOADER}.{item_id}.nonce", 0)
    return f"{UIKeys.DOCUMENT_UPLOADER}.{item_id}.{nonce}"


def _reset_uploader(item_id: str) -> None:
    st.session_state[f"{UIKeys.DOCUMENT_UPLOADER}.{item_id}.nonce"] += 1


def _commit_options(session: WizardSession, item_id: str, index: int, key: str) -> None:
    session.uploads.set_document_options(item_id, index, st.session_state[key])


def render_documents(session: WizardSession) -> None:
    st.subheader(tr("Vos documents", "Your documents"))
    catalog = session.catalog()
    state = session.state

    for failure in session.uploads.drain_failures():
        st.error(
            tr(
                f"Le téléversement de {failure.file_name} a échoué. Veuillez réessayer.",
                f"Uploading {failure.file_name} failed. Please try again.",
            )
        )

    for item_id in sorted(state.selection):
        item = catalog.item(item_id) if catalog else None
        st.markdown(f"**{item.name if item else item_id}**")
        options = catalog.options_for(item_id) if catalog else []

        for index, document in enumerate(state.documents_for(item_id)):
            columns = st.columns([4, 3, 1])
            columns[0].write(f"📄 {document.name} ({document.size // 1024} KB)")
            if options:
                option_names = {option.id: option.name for option in options}
                option_key = f"ui.documents.{item_id}.{index}.options"
                chosen = sorted(document.chosen_option_ids & set(option_names))
                if st.session_state.get(option_key) != chosen:
                    st.session_state[option_key] = chosen
                columns[1].multiselect(
                    tr("Options", "Options"),
                    options=list(option_names),
                    format_func=option_names.__getitem__,
                    key=option_key,
                    on_change=_commit_options,
                    args=(session, item_id, index, option_key),
                    label_visibility="collapsed",
                )
            columns[2].button(
                "✕",
                key=f"ui.documents.{item_id}.{index}.remove",
                on_click=session.uploads.remove_document,
                args=(item_id, index),
            )

        files = st.file_uploader(
            tr("Ajouter des fichiers", "Add files"),
            accept_multiple_files=True,
            key=_uploader_key(item_id),
        )
        if files:
            session.uploads.submit_many(
                UploadRequest(
                    item_id=item_id,
                    file_name=uploaded.name,
                    data=uploaded.getvalue(),
                    mime_type=uploaded.type or "application/octet-stream",
                )
                for uploaded in files
            )
            _reset_uploader(item_id)
            st.rerun()

    if session.uploads.is_uploading():
        st.info(tr_pair(UPLOADING_HINT))
        st.button(tr("Actualiser", "Refresh"), key="ui.documents.refresh")


def render_delivery(session: WizardSession) -> None:
    st.subheader(tr("Mode de livraison", "Delivery method"))
    state = session.state
    labels = {
        DeliveryMethod.ELECTRONIC: tr("Par voie électronique (inclus)", "Electronic (included)"),
        DeliveryMethod.POSTAL: tr("Par courrier", "By post")
        + f" (+{_price_text(session, POSTAL_DELIVERY_PRICE_EUR)})",
    }
    current = None if state.delivery is DeliveryMethod.UNSET else state.delivery
    if st.session_state.get(UIKeys.DELIVERY_RADIO) != current:
        st.session_state[UIKeys.DELIVERY_RADIO] = current

    def _commit() -> None:
        session.container.set({"delivery": st.session_state[UIKeys.DELIVERY_RADIO] or DeliveryMethod.UNSET})

    st.radio(
        tr("Comment souhaitez-vous recevoir vos documents ?", "How would you like to receive your documents?"),
        options=list(labels),
        format_func=labels.__getitem__,
        key=UIKeys.DELIVERY_RADIO,
        on_change=_commit,
    )


def _contact_input(
    session: WizardSession,
    field: str,
    label: str,
    *,
    secret: bool = False,
    after_commit: Callable[[str], None] | None = None,
) -> None:
    key = f"ui.contact.{field}"
    value = getattr(session.state.contact, field)
    if st.session_state.get(key) != value:
        st.session_state[key] = value

    def _commit() -> None:
        entered = st.session_state[key]
        session.container.set({"contact": {field: entered}})
        if after_commit is not None:
            after_commit(entered)

    st.text_input(label, key=key, type="password" if secret else "default", on_change=_commit)


def render_personal_info(session: WizardSession) -> None:
    st.subheader(tr("Vos informations", "Your details"))
    contact = session.state.contact
    left, right = st.columns(2)
    with left:
        _contact_input(session, "first_name", tr("Prénom", "First name"))
    with right:
        _contact_input(session, "last_name", tr("Nom", "Last name"))
    _contact_input(session, "phone", tr("Téléphone", "Phone"))
    _contact_input(
        session,
        "address",
        tr("Adresse", "Address"),
        after_commit=lambda address: session.autofill.request(address),
    )
    city, postal_code, country = st.columns(3)
    with city:
        _contact_input(session, "city", tr("Ville", "City"))
    with postal_code:
        _contact_input(session, "postal_code", tr("Code postal", "Postal code"))
    with country:
        _contact_input(session, "country", tr("Pays", "Country"))
    if contact.address_auto_populated:
        st.caption(tr("Adresse complétée automatiquement.", "Address completed automatically."))

    if contact.authenticated:
        st.success(tr(f"Compte créé pour {contact.email}.", f"Account created for {contact.email}."))
        return
    _contact_input(session, "email", tr("E-mail", "Email"))
    _contact_input(
        session,
        "password",
        tr(
            f"Mot de passe ({MIN_PASSWORD_LENGTH} caractères minimum)",
            f"Password (at least {MIN_PASSWORD_LENGTH} characters)",
        ),
        secret=True,
    )
    _contact_input(session, "password_confirmation", tr("Confirmer le mot de passe", "Confirm password"), secret=True)
    if contact.password and contact.password_confirmation and contact.password != contact.password_confirmation:
        st.caption(tr("Les mots de passe ne correspondent pas.", "Passwords do not match."))


def render_summary(session: WizardSession) -> None:
    st.subheader(tr("Récapitulatif", "Summary"))
    breakdown = session.price_breakdown()
    if breakdown is None:
        st.info(tr("Calcul du prix en cours…", "Calculating price…"))
        return
    currency = breakdown.currency
    for line in breakdown.lines:
        st.write(f"{line.name} × {line.document_count}: {format_amount(line.subtotal, currency)}")
    if breakdown.delivery:
        st.write(f"{tr('Livraison', 'Delivery')}: {format_amount(breakdown.delivery, currency)}")
    st.markdown(f"### {tr('Total', 'Total')}: {format_amount(breakdown.total, currency)}")


STEP_RENDERERS: dict[str, StepRenderer] = {
    "choose-services": render_services,
    "documents": render_documents,
    "delivery": render_delivery,
    "personal-info": render_personal_info,
    "summary": render_summary,
}


def render_step(session: WizardSession) -> None:
    STEP_RENDERERS[session.controller.current_step.key](session)


__all__ = ["STEP_RENDERERS", "render_step"]
