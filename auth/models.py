"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
resolver/evaluator/issuance modules do the work.

Principal is a sum type: a request is authenticated either as a user
(bearer token) or as an API key. The two variants carry different fields and
every consumer dispatches on the concrete class.

Layer rule: no imports from api/, core/, or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from auth.permissions import Permission


@dataclass
class Role:
    """A named bundle of permission flags.

    granted holds the permissions whose flag column decoded as truthy. The
    decoding rules live in auth.permissions.is_flag_set and are applied by the
    store's row mapper.
    """

    name: str
    granted: frozenset[Permission] = field(default_factory=frozenset)
    id: int | None = None


@dataclass
class User:
    """A registered account.

    id is internal and never leaves the server; public_id is what clients see.
    token_version is bumped on every password or role change, which
    invalidates all bearer tokens issued before the change.
    """

    username: str
    email: str
    role_id: int
    public_id: str = ""
    hashed_password: str = ""
    token_version: int | None = 0
    id: int | None = None
    created_at: str | None = None


@dataclass
class ApiKey:
    """A long-lived credential with an explicit permission list.

    Security design:
    - key_hash is HMAC-SHA256(SECRET_KEY, raw_key). Deterministic hashing lets
      the store look keys up by equality without bcrypt's intentional
      slowness; the 256-bit raw key makes brute force infeasible.
    - The raw key is never persisted. It is returned ONCE at creation.
    - permissions never contains the wildcard when written by issuance.
    """

    owner_user_id: int
    name: str
    key_hash: str
    public_id: str = ""
    permissions: list[str] = field(default_factory=list)
    disabled: bool = False
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class UserPrincipal:
    """A request authenticated with a bearer token.

    role_id and token_version are the values stored on the user row at
    resolution time, not the token's copies.
    """

    user_id: int
    public_id: str
    username: str
    role_id: int | None
    token_version: int | None


@dataclass(frozen=True)
class ApiKeyPrincipal:
    """A request authenticated with an API key.

    user_id is the key owner's internal id. Role gates never match this
    variant, even when the owner is an admin.
    """

    user_id: int
    key_public_id: str
    key_name: str
    permissions: tuple[str, ...] = ()

    @property
    def username(self) -> str:
        return f"api_key:{self.key_public_id}"


Principal = Union[UserPrincipal, ApiKeyPrincipal]
