"""
auth/errors.py -- Typed failures raised by the auth engine.

The resolver, evaluator and issuance modules raise these instead of
HTTPException so they stay usable outside FastAPI. api/main.py registers one
exception handler for AuthError that renders the standard error envelope:

    {"error": {"code": ..., "message": ..., "detail": ...}, **extra}

Layer rule: no imports from api/, core/, or catalog/.
"""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """Base class. Subclasses fix code/status; message may be overridden."""

    code = "auth_error"
    status_code = 403
    message = "Authentication failed."

    def __init__(self, message: str | None = None, detail: str | None = None) -> None:
        if message is not None:
            self.message = message
        self.detail = detail
        super().__init__(self.message)

    def extra(self) -> dict[str, Any]:
        """Additional top-level fields for the response body."""
        return {}


class MissingCredential(AuthError):
    code = "missing_credential"
    status_code = 401
    message = "Missing token."


class InvalidCredential(AuthError):
    code = "invalid_credential"
    message = "Invalid API key."


class InvalidOrExpiredCredential(AuthError):
    code = "invalid_token"
    message = "Invalid or expired token."


class MalformedCredential(AuthError):
    code = "malformed_token"
    message = "Invalid token payload."


class PrincipalNotFound(AuthError):
    code = "principal_not_found"
    status_code = 404
    message = "User not found."


class CredentialRevoked(AuthError):
    code = "token_revoked"
    message = "Token invalidated."


class Forbidden(AuthError):
    # Never says which requirement failed.
    code = "forbidden"
    message = "Insufficient permissions."


class ValidationError(AuthError):
    code = "validation_error"
    status_code = 400
    message = "Request validation failed."


class EscalationDenied(AuthError):
    """Key issuance asked for permissions the creator does not hold.

    Unlike Forbidden this names the offending permissions: the caller has
    already proven it holds a valid permission set.
    """

    code = "escalation_denied"
    message = "Cannot grant permissions you don't have."

    def __init__(self, invalid_permissions: list[str]) -> None:
        super().__init__()
        self.invalid_permissions = list(invalid_permissions)

    def extra(self) -> dict[str, Any]:
        return {"invalid_permissions": self.invalid_permissions}


class StorageFailure(AuthError):
    """The store rejected a write.

    created lists the response entries of keys persisted before the failure,
    so a partially applied batch is reported instead of hidden.
    """

    code = "storage_failure"
    status_code = 500
    message = "Storage failure."

    def __init__(self, message: str | None = None, created: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.created = created or []

    def extra(self) -> dict[str, Any]:
        return {"created": self.created} if self.created else {}
