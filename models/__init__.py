"""Pydantic models for the wizard draft and the service catalog."""

from .catalog import Catalog, CatalogItem, CatalogOption
from .form_state import Commerce, Contact, DeliveryMethod, DocumentRecord, FormState, Meta

__all__ = [
    "Catalog",
    "CatalogItem",
    "CatalogOption",
    "Commerce",
    "Contact",
    "DeliveryMethod",
    "DocumentRecord",
    "FormState",
    "Meta",
]
