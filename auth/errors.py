"""
auth/errors.py -- Error taxonomy raised by the auth core.

Every failure a use case can report is one of these kinds. The core raises
them; the HTTP boundary (api/main.py) maps each kind to a status code and
serializes to_payload() into the standard error envelope. Nothing else
crosses the boundary: any other exception is an internal error and is
reported generically.

Messages for credential failures are deliberately constant. Internal detail
(which check failed) is passed to the logger by the caller, never stored on
the exception.

Layer rule: stdlib only.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

# Shared by every "who are you" failure so the payloads are byte-identical.
INVALID_CREDENTIALS = "Invalid credentials"
INVALID_REFRESH_TOKEN = "Invalid refresh token"


class ErrorKind(str, Enum):
    validation = "validation_error"
    unauthorized = "unauthorized"
    forbidden = "forbidden"
    conflict = "conflict"
    not_found = "not_found"
    internal = "internal_error"


class AuthError(Exception):
    """Base class. Subclasses pin kind; message is safe to show the caller."""

    kind: ErrorKind = ErrorKind.internal
    default_message = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {"code": self.kind.value, "message": self.message}


class ValidationError(AuthError):
    """One or more input fields are malformed. Carries every violation, not just the first."""

    kind = ErrorKind.validation
    default_message = "One or more validation failures have occurred."

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__()
        self.errors = errors

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["fields"] = {name: list(msgs) for name, msgs in self.errors.items()}
        return payload


class UnauthorizedError(AuthError):
    kind = ErrorKind.unauthorized
    default_message = INVALID_CREDENTIALS


class ForbiddenError(AuthError):
    kind = ErrorKind.forbidden
    default_message = "You do not have access to this resource."


class ConflictError(AuthError):
    """A unique value is already taken. field names the collision."""

    kind = ErrorKind.conflict

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.field:
            payload["field"] = self.field
        return payload


class NotFoundError(AuthError):
    kind = ErrorKind.not_found

    def __init__(self, entity: str, key: object) -> None:
        super().__init__(f'Entity "{entity}" ({key}) was not found.')
        self.entity = entity
        self.key = key
