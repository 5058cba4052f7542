"""
auth/resolver.py -- Turn request credential material into a Principal.

Two mutually exclusive channels, checked in fixed priority order:
  1. X-API-Key header -- if present, it wins and any bearer token is ignored.
  2. Authorization: Bearer <token>.

API-key path:
  trim -> HMAC digest -> lookup by digest -> reject unknown or disabled key
  -> ApiKeyPrincipal with the key's stored permission list.

Bearer path:
  require token -> verify signature/expiry -> validate payload shape
  -> look up user by public_id -> compare token_version snapshot with the
  stored counter -> UserPrincipal carrying the *stored* role id and version.

No retries. A store exception propagates and is reported as a 500 by the
API layer.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import logging

from auth.errors import CredentialRevoked, InvalidCredential, MissingCredential, PrincipalNotFound
from auth.models import ApiKeyPrincipal, Principal, UserPrincipal
from auth.store import AuthStore
from auth.tokens import decode_access_token, hash_api_key, parse_token_claims

logger = logging.getLogger("permgate.auth")


def resolve_principal(store: AuthStore, api_key: str | None, authorization: str | None) -> Principal:
    """Authenticate a request from its X-API-Key and Authorization header values.

    Raises an AuthError subclass on failure; never returns None.
    """
    if api_key:
        return resolve_api_key(store, api_key)
    return resolve_bearer(store, _bearer_token(authorization))


def resolve_api_key(store: AuthStore, raw_key: str) -> ApiKeyPrincipal:
    key = store.get_api_key_by_hash(hash_api_key(raw_key.strip()))
    if key is None or key.disabled:
        logger.warning("Rejected API key (%s)", "disabled" if key is not None else "unknown")
        raise InvalidCredential()
    return ApiKeyPrincipal(
        user_id=key.owner_user_id,
        key_public_id=key.public_id,
        key_name=key.name,
        permissions=tuple(key.permissions),
    )


def resolve_bearer(store: AuthStore, token: str | None) -> UserPrincipal:
    if not token:
        raise MissingCredential()

    claims = parse_token_claims(decode_access_token(token))

    user = store.get_user_by_public_id(claims.public_id)
    if user is None:
        raise PrincipalNotFound()

    # A missing snapshot only matches a missing stored value.
    if claims.token_version != user.token_version:
        logger.info(
            "Revoked token for '%s' (token v%s, stored v%s)",
            user.public_id,
            claims.token_version,
            user.token_version,
        )
        raise CredentialRevoked()

    return UserPrincipal(
        user_id=user.id,
        public_id=user.public_id,
        username=user.username,
        role_id=user.role_id,
        token_version=user.token_version,
    )


def _bearer_token(authorization: str | None) -> str | None:
    """Extract <token> from "Bearer <token>". None when absent or another scheme."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None
