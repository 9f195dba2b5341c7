"""
Exception hierarchy for the access engine.

Validation errors are caller mistakes, ``Unavailable`` is the only
retryable condition, and ``GuardError`` subclasses are policy outcomes the
presenting layer renders as explicit denials or prompts.
"""

from __future__ import annotations

from typing import Any


class AccessError(Exception):
    """Base exception for all engine errors."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    retryable: bool = False

    def __init__(self, message: str = "Access engine error", **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "status": self.status_code}


class InvalidSlot(AccessError):
    status_code = 400
    code = "INVALID_SLOT"


class InvalidKey(AccessError):
    status_code = 400
    code = "INVALID_KEY"


class ValidationError(AccessError):
    """Malformed write payload."""

    status_code = 422
    code = "VALIDATION_ERROR"


class Unavailable(AccessError):
    """The store timed out or could not be reached."""

    status_code = 503
    code = "UNAVAILABLE"
    retryable = True


class GuardError(AccessError):
    """A policy check refused the operation; nothing was written."""


class Forbidden(GuardError):
    status_code = 403
    code = "FORBIDDEN"


class RoleInactive(GuardError):
    status_code = 400
    code = "ROLE_INACTIVE"


class LastManager(GuardError):
    status_code = 409
    code = "LAST_MANAGER"


class ConfirmationRequired(GuardError):
    status_code = 400
    code = "CONFIRM_REQUIRED"


class MembershipNotFound(GuardError):
    status_code = 404
    code = "MEMBERSHIP_NOT_FOUND"
