"""
auth/issuance.py -- Mint API keys without privilege escalation.

Invariant: a stored key's permission list is a concrete subset of what its
creator held at issuance time, and never contains the wildcard "all".

The batch runs in two phases:
  1. Validation -- every KeySpec is checked and its final permission list is
     computed. Any validation error or escalation aborts the whole batch
     before a single key is written.
  2. Persistence -- keys are inserted one at a time in input order. There is
     no transaction across the batch; if a write fails part-way the keys
     already created are reported on the StorageFailure.

Wildcard expansion ("all" anywhere in the requested list replaces the list):
  - creator is an API key     -> the key's own permissions
  - creator is an admin user  -> every known permission
  - creator is any other user -> the role's granted permissions

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import EscalationDenied, Forbidden, StorageFailure, ValidationError
from auth.models import ApiKey, ApiKeyPrincipal, Principal, UserPrincipal
from auth.permissions import ADMIN_ROLE, ALL_PERMISSIONS, WILDCARD, Permission
from auth.store import AuthStore
from auth.tokens import generate_api_key, generate_public_id, hash_api_key

logger = logging.getLogger("permgate.auth")

RAW_KEY_WARNING = "Store this raw key securely; it will not be shown again."


@dataclass
class KeySpec:
    """One requested key. permissions=None means "no permissions"."""

    name: str
    permissions: Optional[list[Any]] = None


@dataclass
class IssuedKey:
    """Creation result. raw_key exists only in this object and the HTTP response."""

    public_id: str
    name: str
    permissions: list[str]
    created_at: str
    raw_key: str
    message: str = RAW_KEY_WARNING


@dataclass(frozen=True)
class CreatorContext:
    effective: tuple[str, ...]
    is_admin: bool


def creator_context(store: AuthStore, creator: Principal) -> CreatorContext:
    """Work out what the creator may grant."""
    if isinstance(creator, ApiKeyPrincipal):
        perms = creator.permissions
        # A legacy wildcard on the creating key already passes every plain
        # gate, so it stands for the full universe here too.
        if WILDCARD in perms:
            perms = ALL_PERMISSIONS
        return CreatorContext(effective=_dedupe(perms), is_admin=False)
    if isinstance(creator, UserPrincipal):
        role = store.get_role(creator.role_id) if creator.role_id is not None else None
        if role is None:
            raise Forbidden()
        effective = tuple(p.value for p in Permission if p in role.granted)
        return CreatorContext(effective=effective, is_admin=role.name.lower() == ADMIN_ROLE)
    raise TypeError(f"Unknown principal type: {type(creator).__name__}")


def finalize_permissions(ctx: CreatorContext, requested: Optional[list[Any]]) -> list[str]:
    """Validate and expand one requested list. Does not check escalation."""
    if requested is None:
        return []
    if not isinstance(requested, list) or not all(isinstance(p, str) for p in requested):
        raise ValidationError("permissions must be an array of strings")
    if WILDCARD in requested:
        if ctx.is_admin:
            return list(ALL_PERMISSIONS)
        return list(ctx.effective)
    return list(_dedupe(requested))


def issue_keys(store: AuthStore, creator: Principal, specs: Sequence[KeySpec]) -> list[IssuedKey]:
    """Create one API key per spec, in order, or fail the whole batch.

    Raises:
        ValidationError:  a KeySpec is malformed (nothing persisted)
        EscalationDenied: a non-admin asked for permissions it lacks
                          (nothing persisted; lists the offending names)
        StorageFailure:   a write failed; carries the keys created so far
    """
    ctx = creator_context(store, creator)

    finalized: list[tuple[KeySpec, list[str]]] = []
    for spec in specs:
        if not isinstance(spec.name, str) or not spec.name.strip():
            raise ValidationError("name must be a non-empty string")
        finalized.append((spec, finalize_permissions(ctx, spec.permissions)))

    requested_all = _dedupe(p for _, perms in finalized for p in perms)
    if ctx.is_admin:
        unknown = [p for p in requested_all if p not in ALL_PERMISSIONS]
        if unknown:
            raise ValidationError("Unknown permissions.", detail=", ".join(unknown))
    else:
        invalid = [p for p in requested_all if p not in ctx.effective]
        if invalid:
            logger.warning("Escalation denied for '%s': %s", creator.username, invalid)
            raise EscalationDenied(invalid)

    issued: list[IssuedKey] = []
    for spec, perms in finalized:
        raw_key = generate_api_key()
        try:
            stored = store.create_api_key(
                ApiKey(
                    owner_user_id=creator.user_id,
                    name=spec.name,
                    key_hash=hash_api_key(raw_key),
                    public_id=generate_public_id("api_key"),
                    permissions=perms,
                )
            )
        except SQLAlchemyError as exc:
            logger.exception("API key insert failed after %d of %d keys", len(issued), len(finalized))
            raise StorageFailure(
                "Failed to create api keys.",
                created=[asdict(k) for k in issued],
            ) from exc
        issued.append(
            IssuedKey(
                public_id=stored.public_id,
                name=stored.name,
                permissions=stored.permissions,
                created_at=stored.created_at or "",
                raw_key=raw_key,
            )
        )

    logger.info("Issued %d API key(s) for '%s'", len(issued), creator.username)
    return issued


def _dedupe(values) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))
