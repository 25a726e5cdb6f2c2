"""
Typed errors raised by the list client.

Every error carries a user facing ``message`` and a stable ``code`` that the
HTTP layer echoes back in its error envelope.
"""
from __future__ import annotations

from typing import Any, Optional


class SharedListError(Exception):
    """Base class for all errors surfaced to the presentation layer."""

    code = "SharedListError"

    def __init__(self, message: str, detail: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class InvalidInputError(SharedListError):
    """A required field is missing or malformed. Raised before any I/O."""

    code = "ValidationError"


class NotFoundError(SharedListError):
    """The referenced list, todo or invite code does not exist."""

    code = "NotFound"


class ConflictError(SharedListError):
    """The operation conflicts with current state (e.g. already a member)."""

    code = "Conflict"


class NotSignedInError(SharedListError):
    """The operation needs a signed in user."""

    code = "NotSignedIn"


class RemoteStoreError(SharedListError):
    """A read, write or query against the remote document store failed."""

    code = "RemoteFailure"
