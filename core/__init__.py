"""Core package for the notary intake wizard."""

from .errors import HardPrerequisiteFailure, LookupFailure, StorageFailure, SyncFailure, WizardError

__all__ = ["HardPrerequisiteFailure", "LookupFailure", "StorageFailure", "SyncFailure", "WizardError"]
