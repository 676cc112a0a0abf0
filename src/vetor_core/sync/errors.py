"""Sync domain exceptions.

SyncError is the base; the orchestrator catches it (and anything else) at the
pass boundary so no sync failure propagates past a single (organization,
source) pass.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync failures."""


class CredentialsNotConfigured(SyncError):
    """The organization has no usable credentials for the requested source."""

    def __init__(self, organization_id: object, source: str) -> None:
        self.organization_id = organization_id
        self.source = source
        super().__init__(f"{source} credentials not configured for organization {organization_id}")


class SourceTransportError(SyncError):
    """The external source could not be reached or answered with a non-2xx status."""

    def __init__(self, source: str, message: str, status_code: int | None = None) -> None:
        self.source = source
        self.status_code = status_code
        super().__init__(f"{source} request failed: {message}")


class ReconciliationError(SyncError):
    """A single external record could not be applied locally."""


class DealMatchConflict(ReconciliationError):
    """More than one local deal matched an external deal by title."""

    def __init__(self, external_id: str, title: str, candidates: int) -> None:
        self.external_id = external_id
        self.title = title
        self.candidates = candidates
        super().__init__(
            f"Deal {external_id} matches {candidates} local deals titled {title!r}; not merged"
        )
