"""Error taxonomy shared by services and the API layer.

Services raise these; ``exam_portal.main`` turns them into the
``{"error": ..., "kind": ...}`` envelope with the matching status code.
"""

from typing import Optional


class PortalError(Exception):
    """Base class for every rejected operation."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str, errors: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "kind": self.kind}
        if self.errors:
            body["errors"] = self.errors
        return body


class Unauthenticated(PortalError):
    """Missing, expired or revoked session."""

    kind = "unauthenticated"
    status_code = 401


class Forbidden(PortalError):
    """Role does not grant the requested capability."""

    kind = "forbidden"
    status_code = 403


class NotFound(PortalError):
    kind = "not_found"
    status_code = 404


class InvalidReference(NotFound):
    """An exam points at questions that no longer exist."""

    kind = "invalid_reference"

    def __init__(self, message: str, missing_ids=None):
        super().__init__(message)
        self.missing_ids = list(missing_ids or [])


class ValidationError(PortalError):
    """Missing required field or malformed value.

    ``errors`` maps field names to user-facing messages.
    """

    kind = "validation_error"
    status_code = 400


class Conflict(PortalError):
    kind = "conflict"
    status_code = 409


class InvalidState(PortalError):
    """Operation attempted on an attempt that is no longer in progress."""

    kind = "invalid_state"
    status_code = 409
