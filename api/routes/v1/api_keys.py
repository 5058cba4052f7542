"""
api/routes/v1/api_keys.py -- API key management endpoints.

Routes:
  POST   /api/v1/api-keys               -- issue one key or a batch (create_api_keys)
  GET    /api/v1/api-keys               -- list the owner's keys (read_api_keys)
  DELETE /api/v1/api-keys               -- delete keys by public id (delete_api_keys)
  PATCH  /api/v1/api-keys/{public_id}   -- enable or disable a key (delete_api_keys)

Keys belong to the user who created them; a key that creates keys creates
them for its own owner. All listing and mutation is scoped to that owner.
The raw key appears only in the creation response.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import (
    ApiKeyCreateBody,
    ApiKeyCreatedItem,
    ApiKeyCreatedResponse,
    ApiKeyDelete,
    ApiKeyDeleteResponse,
    ApiKeyPatch,
    ApiKeyResponse,
    MessageResponse,
)
from auth.dependencies import get_auth_store, require_permissions
from auth.issuance import KeySpec, issue_keys
from auth.models import Principal
from auth.permissions import Permission

logger = logging.getLogger("permgate.api")

router = APIRouter()


@router.post("/api-keys", response_model=ApiKeyCreatedResponse, status_code=201)
async def create_api_keys(
    request: Request,
    body: ApiKeyCreateBody,
    principal: Principal = Depends(require_permissions(Permission.CREATE_API_KEYS.value)),
) -> ApiKeyCreatedResponse:
    """Issue API keys. The body is one key object or an array of them.

    Requesting "all" grants everything the caller holds. Asking for anything
    the caller does not hold fails the whole batch with 403.
    """
    items = body if isinstance(body, list) else [body]
    if not items:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "At least one key is required."},
        )
    specs = [KeySpec(name=item.name, permissions=item.permissions) for item in items]
    issued = issue_keys(get_auth_store(request), principal, specs)
    return ApiKeyCreatedResponse(
        created=[
            ApiKeyCreatedItem(
                public_id=k.public_id,
                name=k.name,
                permissions=k.permissions,
                created_at=k.created_at,
                raw_key=k.raw_key,
                message=k.message,
            )
            for k in issued
        ]
    )


@router.get("/api-keys", response_model=list[ApiKeyResponse])
async def list_api_keys(
    request: Request,
    principal: Principal = Depends(require_permissions(Permission.READ_API_KEYS.value)),
) -> list[ApiKeyResponse]:
    keys = get_auth_store(request).list_api_keys(principal.user_id)
    return [
        ApiKeyResponse(
            public_id=k.public_id,
            name=k.name,
            permissions=k.permissions,
            created_at=k.created_at or "",
            disabled=k.disabled,
        )
        for k in keys
    ]


@router.delete("/api-keys", response_model=ApiKeyDeleteResponse)
async def delete_api_keys(
    request: Request,
    body: ApiKeyDelete,
    principal: Principal = Depends(require_permissions(Permission.DELETE_API_KEYS.value)),
) -> ApiKeyDeleteResponse:
    """Delete the caller's keys whose public ids are listed. Unknown ids are skipped."""
    deleted = get_auth_store(request).delete_api_keys(body.public_ids, principal.user_id)
    logger.info("Deleted %d API key(s) for '%s'", deleted, principal.username)
    return ApiKeyDeleteResponse(message="API keys deleted.", deleted=deleted)


@router.patch("/api-keys/{public_id}", response_model=MessageResponse)
async def patch_api_key(
    request: Request,
    public_id: str,
    body: ApiKeyPatch,
    principal: Principal = Depends(require_permissions(Permission.DELETE_API_KEYS.value)),
) -> MessageResponse:
    """Disable (or re-enable) one key. A disabled key authenticates nothing."""
    if not get_auth_store(request).set_api_key_disabled(public_id, principal.user_id, body.disabled):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "API key not found."},
        )
    state = "disabled" if body.disabled else "enabled"
    logger.info("API key %s %s by '%s'", public_id, state, principal.username)
    return MessageResponse(message=f"API key {state}.")
