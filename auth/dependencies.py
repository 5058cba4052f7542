"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two auth methods, checked in priority order:
  1. X-API-Key header -- scripts and integrations using issued API keys.
  2. Authorization: Bearer <token> header -- users who logged in.

get_current_principal() resolves the request into a Principal or raises an
AuthError (rendered by api/main.py's exception handler).
require_permissions(*gate) wraps it with a permission gate; any single entry
of the gate grants access.

Layer rule: no imports from api/ or catalog/.
  auth/dependencies.py may import from fastapi (for Depends/Request) because
  this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.errors import Forbidden
from auth.evaluator import authorize
from auth.models import Principal, UserPrincipal
from auth.resolver import resolve_principal
from auth.store import AuthStore


def get_auth_store(request: Request) -> AuthStore:
    return request.app.state.auth_store


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises an AuthError if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    return resolve_principal(
        get_auth_store(request),
        api_key=request.headers.get("X-API-Key"),
        authorization=request.headers.get("Authorization"),
    )


def require_permissions(*required: str):
    """Return a dependency that enforces a permission gate.

    Usage:
        @router.get("/users")
        def list_users(principal: Principal = Depends(require_permissions("get_users"))): ...

        @router.post("/users/change-role")
        def change_role(principal: Principal = Depends(require_permissions("role:admin"))): ...
    """

    def _check(request: Request, principal: Principal = Depends(get_current_principal)) -> Principal:
        authorize(get_auth_store(request), principal, required)
        return principal

    return _check


def require_user(principal: Principal = Depends(get_current_principal)) -> UserPrincipal:
    """Require a bearer-token user; API keys are refused with 403."""
    if not isinstance(principal, UserPrincipal):
        raise Forbidden("This operation requires a user login, not an API key.")
    return principal
