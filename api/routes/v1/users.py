"""
api/routes/v1/users.py -- User account endpoints.

Routes:
  GET    /api/v1/users/me               -- the caller's own account (get_my_user)
  GET    /api/v1/users                  -- all accounts (get_users)
  POST   /api/v1/users/change-password  -- set a new password (user login only)
  POST   /api/v1/users/change-role      -- move a user to another role (admin)
  DELETE /api/v1/users/{public_id}      -- delete a user and their keys (admin)

Password and role changes bump token_version, so every token issued before
the change stops working on its next request.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import ChangePasswordRequest, ChangeRoleRequest, MessageResponse, UserResponse
from auth.dependencies import get_auth_store, require_permissions, require_user
from auth.models import ApiKeyPrincipal, Principal, User, UserPrincipal
from auth.permissions import ADMIN_ROLE, Permission
from auth.store import AuthStore
from auth.tokens import hash_password

logger = logging.getLogger("permgate.api")

router = APIRouter()


def _user_to_response(store: AuthStore, user: User) -> UserResponse:
    role = store.get_role(user.role_id)
    return UserResponse(
        public_id=user.public_id,
        username=user.username,
        role=role.name if role else "",
    )


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "not_found", "message": "User not found."},
    )


@router.get("/users/me", response_model=UserResponse)
async def get_me(
    request: Request,
    principal: Principal = Depends(require_permissions(Permission.GET_MY_USER.value)),
) -> UserResponse:
    """Return the account behind the credential (the key owner for API keys)."""
    store = get_auth_store(request)
    user = store.get_user_by_id(principal.user_id)
    if user is None:
        raise _not_found()
    return _user_to_response(store, user)


@router.get("/users", response_model=list[UserResponse])
async def list_users(
    request: Request,
    _principal: Principal = Depends(require_permissions(Permission.GET_USERS.value)),
) -> list[UserResponse]:
    store = get_auth_store(request)
    return [_user_to_response(store, u) for u in store.list_users()]


@router.post("/users/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    principal: UserPrincipal = Depends(require_user),
) -> MessageResponse:
    """Replace the caller's password. Outstanding tokens are revoked."""
    store = get_auth_store(request)
    if not store.update_password(principal.user_id, hash_password(body.password)):
        raise _not_found()
    logger.info("Password changed for '%s'", principal.username)
    return MessageResponse(message="Password changed. Please log in again.")


@router.post("/users/change-role", response_model=MessageResponse)
async def change_role(
    request: Request,
    body: ChangeRoleRequest,
    principal: Principal = Depends(require_permissions(f"role:{ADMIN_ROLE}")),
) -> MessageResponse:
    store = get_auth_store(request)
    user = store.get_user_by_public_id(body.user_public_id)
    if user is None:
        raise _not_found()
    role = store.get_role_by_name(body.new_role)
    if role is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_role", "message": "Invalid role."},
        )
    store.change_role(user.id, role.id)
    logger.info("Role of '%s' changed to '%s' by '%s'", user.username, role.name, principal.username)
    return MessageResponse(message="Role changed.")


@router.delete("/users/{public_id}", response_model=MessageResponse)
async def delete_user(
    request: Request,
    public_id: str,
    principal: Principal = Depends(require_permissions(f"role:{ADMIN_ROLE}")),
) -> MessageResponse:
    """Delete a user. Their API keys go with them."""
    store = get_auth_store(request)
    user = store.get_user_by_public_id(public_id)
    if user is None:
        raise _not_found()
    if not isinstance(principal, ApiKeyPrincipal) and user.id == principal.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_delete", "message": "Cannot delete your own account."},
        )
    store.delete_user(user.id)
    logger.info("User '%s' deleted by '%s'", user.username, principal.username)
    return MessageResponse(message="User deleted.")
