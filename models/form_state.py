"""Pydantic models for the persisted wizard draft."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Dict, List, Optional, Set

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from pricing.currency import SOURCE_CURRENCY, normalize_currency_code


class _DraftModel(BaseModel):
    """Base for draft sections; instances are re-validated on every commit."""

    model_config = ConfigDict(extra="ignore", revalidate_instances="always")


class DeliveryMethod(StrEnum):
    """How the notarised documents reach the client."""

    POSTAL = "postal"
    ELECTRONIC = "electronic"
    UNSET = "unset"


def _clean_text(value: object) -> object:
    if isinstance(value, str):
        return value.strip()
    return value


class DocumentRecord(_DraftModel):
    """Metadata of one uploaded document.

    Unknown keys such as inline file payloads are dropped on validation so raw
    bytes never reach the persisted draft.
    """

    name: str
    size: int = 0
    mime_type: str = "application/octet-stream"
    storage_ref: Optional[str] = None
    public_url: Optional[str] = None
    chosen_option_ids: Set[str] = Field(default_factory=set)
    uploaded_at: Optional[datetime] = None

    @field_serializer("chosen_option_ids")
    def _serialize_options(self, value: Set[str]) -> List[str]:
        return sorted(value)


class Contact(_DraftModel):
    """Personal details collected on the personal-info step."""

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = ""
    time_zone: str = ""
    notes: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address_auto_populated: bool = False
    authenticated: bool = False
    # Held in memory for account creation only; never serialized.
    password: str = Field(default="", exclude=True, repr=False)
    password_confirmation: str = Field(default="", exclude=True, repr=False)

    @field_validator(
        "first_name",
        "last_name",
        "email",
        "phone",
        "address",
        "city",
        "postal_code",
        "country",
        "time_zone",
        mode="before",
    )
    @classmethod
    def _strip_text(cls, value: object) -> object:
        if value is None:
            return ""
        return _clean_text(value)

    def has_identity(self) -> bool:
        """Return ``True`` when a name or email has been entered."""

        return bool(self.first_name or self.last_name or self.email)


class Commerce(_DraftModel):
    """Currency preference and marketing attribution."""

    currency_code: str = SOURCE_CURRENCY
    ad_click_id: Optional[str] = None

    @field_validator("currency_code", mode="before")
    @classmethod
    def _validate_currency(cls, value: object) -> str:
        code = normalize_currency_code(value)
        if code is None:
            raise ValueError(f"unsupported currency: {value!r}")
        return code


class Meta(_DraftModel):
    """Bookkeeping fields that never come from the user."""

    session_id: str = ""
    last_applied_external_param: Optional[str] = None
    last_applied_currency_param: Optional[str] = None


class FormState(_DraftModel):
    """The whole wizard draft, namespaced by section."""

    selection: Set[str] = Field(default_factory=set)
    documents_by_selection: Dict[str, List[DocumentRecord]] = Field(default_factory=dict)
    delivery: DeliveryMethod = DeliveryMethod.UNSET
    contact: Contact = Field(default_factory=Contact)
    commerce: Commerce = Field(default_factory=Commerce)
    meta: Meta = Field(default_factory=Meta)

    @field_serializer("selection")
    def _serialize_selection(self, value: Set[str]) -> List[str]:
        return sorted(value)

    @model_validator(mode="after")
    def _prune_orphan_documents(self) -> "FormState":
        orphans = [key for key in self.documents_by_selection if key not in self.selection]
        for key in orphans:
            del self.documents_by_selection[key]
        return self

    def documents_for(self, item_id: str) -> List[DocumentRecord]:
        return list(self.documents_by_selection.get(item_id, []))

    def document_count(self) -> int:
        return sum(len(records) for records in self.documents_by_selection.values())

    def has_real_progress(self) -> bool:
        """Return ``True`` once the draft is worth mirroring remotely."""

        return bool(self.selection) or self.document_count() > 0 or self.contact.has_identity()

    def to_storage(self) -> dict:
        """Return the JSON-compatible payload written to the local store."""

        return self.model_dump(mode="json")


__all__ = [
    "Commerce",
    "Contact",
    "DeliveryMethod",
    "DocumentRecord",
    "FormState",
    "Meta",
]
