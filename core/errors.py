"""Exception and failure types shared by the intake wizard."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from utils.i18n import LocalizedText


class WizardError(Exception):
    """Base exception for wizard engine issues."""


class StorageFailureKind(StrEnum):
    """Distinguish failures that need blob cleanup from transient ones."""

    QUOTA_EXCEEDED = "quota_exceeded"
    WRITE_ERROR = "write_error"


@dataclass(frozen=True)
class StorageFailure:
    """Describe a local write that did not reach the storage medium.

    Storage failures are values, not exceptions: the keyed store hands them to
    its subscribers and to the caller of ``write`` but never raises them.
    """

    kind: StorageFailureKind
    key: str
    detail: str = ""

    @property
    def is_quota(self) -> bool:
        return self.kind is StorageFailureKind.QUOTA_EXCEEDED


class QuotaExceededError(OSError):
    """Raised by a storage medium when a payload does not fit its budget."""


class LookupFailure(WizardError):
    """Raised when an address, time-zone or currency lookup fails."""


class SyncFailure(WizardError):
    """Raised when the remote record upsert fails."""


STORAGE_NOTICE_MESSAGE: LocalizedText = (
    "Vos modifications n'ont peut-être pas été enregistrées sur cet appareil.",
    "Your changes may not have been saved on this device.",
)

STORAGE_QUOTA_MESSAGE: LocalizedText = (
    "L'espace de stockage local est plein. Retirez des documents volumineux pour continuer l'enregistrement.",
    "Local storage is full. Remove large documents so your progress can be saved again.",
)

ACCOUNT_CREATION_MESSAGE: LocalizedText = (
    "Nous n'avons pas pu créer votre compte. Veuillez réessayer.",
    "We could not create your account. Please try again.",
)

CHECKOUT_MESSAGE: LocalizedText = (
    "Le paiement n'a pas pu être initialisé. Veuillez réessayer.",
    "The payment could not be started. Please try again.",
)


class HardPrerequisiteFailure(WizardError):
    """Raised when account or checkout creation fails and navigation must halt."""

    def __init__(self, message: LocalizedText, *, cause: str | None = None) -> None:
        super().__init__(cause or message[1])
        self.user_message = message
        self.cause = cause
