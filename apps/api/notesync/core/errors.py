"""Error taxonomy for room synchronization.

Every error carries a human-readable ``message`` that is safe to send back to
the session that triggered it. None of them are fatal to the server.
"""
from __future__ import annotations


class SyncError(Exception):
    """Base class for errors reported to the originating session."""

    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(SyncError):
    default_message = "Invalid data"


class ContentTooLarge(SyncError):
    default_message = "Content too large"


class NotFound(SyncError):
    default_message = "Not found"


class AccessDenied(SyncError):
    default_message = "Access denied"


class StoreFailure(SyncError):
    default_message = "Storage unavailable"
