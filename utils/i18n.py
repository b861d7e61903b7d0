"""Simple i18n helper utilities."""

from __future__ import annotations

from typing import Final, TypeAlias

import streamlit as st

LocalizedText: TypeAlias = tuple[str, str]

DEFAULT_LANGUAGE: Final[str] = "fr"

BACK_BUTTON_LABEL: Final[LocalizedText] = ("Retour", "Back")
CONTINUE_BUTTON_LABEL: Final[LocalizedText] = ("Continuer", "Continue")
UPLOADING_HINT: Final[LocalizedText] = (
    "Téléversement en cours… veuillez patienter.",
    "Upload in progress… please wait.",
)
START_OVER_LABEL: Final[LocalizedText] = ("Recommencer", "Start over")
PAYMENT_CONFIRMED_MESSAGE: Final[LocalizedText] = (
    "Merci ! Votre paiement a été confirmé.",
    "Thank you! Your payment has been confirmed.",
)
PAYMENT_CANCELLED_MESSAGE: Final[LocalizedText] = (
    "Le paiement a été annulé. Votre dossier est intact.",
    "Payment was cancelled. Your order is still here.",
)


def tr(fr: str, en: str, lang: str | None = None) -> str:
    """Return the string matching the current language.

    Args:
        fr: French text.
        en: English text.
        lang: Optional language override (``"fr"`` or ``"en"``).

    Returns:
        The localized string for the requested language.
    """
    code = lang or st.session_state.get("lang", DEFAULT_LANGUAGE)
    return fr if code == "fr" else en


def tr_pair(text: LocalizedText, lang: str | None = None) -> str:
    """Resolve a ``(fr, en)`` tuple with :func:`tr`."""

    return tr(text[0], text[1], lang=lang)
