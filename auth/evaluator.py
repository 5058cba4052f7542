"""
auth/evaluator.py -- Decide whether a Principal satisfies a permission gate.

A gate is an ordered list of requirement strings. Each entry is either a
plain permission name ("post_products") or a role gate ("role:admin").
Any single matching entry grants access (logical OR); there is no AND.
Composite gates are built by calling authorize() more than once.

API-key principals:
  - role gates never match
  - a plain name matches when it is in the key's list, or when the list holds
    the wildcard "all" (legacy rows; issuance never writes it)

User principals:
  - the role row is re-read from the store on every call, so role edits apply
    on the next request without reissuing a token
  - the "ban" role denies everything, including "role:ban"
  - a role gate matches on case-insensitive role name equality
  - a plain name matches when the role grants that permission

A denial never says which requirement was missing.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from auth.errors import Forbidden
from auth.models import ApiKeyPrincipal, Principal, Role, UserPrincipal
from auth.permissions import BANNED_ROLE, WILDCARD, parse_permission, role_gate_target
from auth.store import AuthStore

logger = logging.getLogger("permgate.auth")


def is_allowed(store: AuthStore, principal: Principal, required: Sequence[str]) -> bool:
    """Return True if any entry of *required* matches *principal*."""
    if isinstance(principal, ApiKeyPrincipal):
        return any(_key_matches(principal, req) for req in required)
    if isinstance(principal, UserPrincipal):
        role = store.get_role(principal.role_id) if principal.role_id is not None else None
        if role is None or role.name.lower() == BANNED_ROLE:
            return False
        return any(_role_matches(role, req) for req in required)
    raise TypeError(f"Unknown principal type: {type(principal).__name__}")


def authorize(store: AuthStore, principal: Principal, required: Sequence[str]) -> None:
    """Raise Forbidden unless *principal* satisfies the gate."""
    if not is_allowed(store, principal, required):
        logger.warning("Access denied for '%s' (gate=%s)", principal.username, list(required))
        raise Forbidden()


def _key_matches(principal: ApiKeyPrincipal, requirement: str) -> bool:
    if role_gate_target(requirement) is not None:
        return False
    return requirement in principal.permissions or WILDCARD in principal.permissions


def _role_matches(role: Role, requirement: str) -> bool:
    target = role_gate_target(requirement)
    if target is not None:
        return role.name.lower() == target
    permission = parse_permission(requirement)
    return permission is not None and permission in role.granted
