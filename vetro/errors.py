"""Exception types raised across the library services."""

from __future__ import annotations


class VetroError(Exception):
    """Base class for library errors."""


class StoreWriteError(VetroError):
    """The catalog document could not be persisted."""


class EnrichmentError(VetroError):
    """Metadata enrichment failed for a single entry."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class FilesystemConflict(VetroError):
    """A candidate could not be moved into its canonical location."""


class DuplicateAssetDetected(VetroError):
    """The canonical path of a candidate is already registered."""


class EntryNotFoundError(VetroError, KeyError):
    """No catalog entry carries the requested id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Entry not found"


class ProfileNotFoundError(VetroError, KeyError):
    """No viewer profile carries the requested id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Profile not found"
