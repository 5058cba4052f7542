"""
auth/tokens.py -- JWT, password hashing, API key and signature utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       public_id, username, role_id, token_version and expiry. Internal user
       ids never appear in a token. Decoding failures raise
       InvalidOrExpiredCredential; a valid signature over the wrong payload
       shape raises MalformedCredential.

  Passwords: bcrypt with a configurable work factor (BCRYPT_ROUNDS). The
       _DUMMY_HASH constant enables timing equalization in authenticate_user()
       so response time does not reveal whether a username exists [C1].

  API keys: secrets.token_hex(32) gives 256 bits of entropy. We store
       HMAC-SHA256(SECRET_KEY, raw_key) so lookup is a single equality match.
       bcrypt's intentional slowness is unnecessary here.

  Webhooks: verify_hmac_signature() compares with hmac.compare_digest so the
       comparison time does not depend on how many leading bytes match.

Layer rule: no imports from api/ or catalog/. Import from core/ is allowed --
core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Optional

import bcrypt
from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from auth.errors import InvalidOrExpiredCredential, MalformedCredential
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import AuthStore

logger = logging.getLogger("permgate.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

API_KEY_PREFIX = "pg_"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are rejected by bcrypt 4.x. The API layer
    caps password length well below that (Pydantic max_length).
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Corrupt or non-bcrypt hash in the store.
        return False


# Timing equalization dummy hash [C1]. Computed once at module load with the
# configured work factor so an unknown username costs the same as a wrong
# password.
_DUMMY_HASH: str = hash_password("permgate_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


class TokenClaims(BaseModel):
    """Required shape of a decoded bearer token.

    strict=True: "5" is not an int and 5 is not a str. Registered claims such
    as exp and iat are ignored here; jose has already checked them.
    """

    model_config = ConfigDict(strict=True, extra="ignore", frozen=True)

    public_id: str
    username: str
    role_id: Optional[int] = None
    token_version: Optional[int] = None


def create_access_token(
    public_id: str,
    username: str,
    role_id: int | None,
    token_version: int | None,
    expire_seconds: int = 0,
) -> str:
    """Encode a signed JWT carrying the user's identity and token-version snapshot.

    Args:
        public_id:      External user id (never the internal numeric id).
        username:       Display name, informational only.
        role_id:        Role at issue time. Advisory; authorization re-reads it.
        token_version:  Snapshot compared against the stored counter on use.
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "public_id": public_id,
        "username": username,
        "role_id": role_id,
        "token_version": token_version,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify signature and expiry and return the raw payload.

    Raises InvalidOrExpiredCredential on a bad signature, a malformed token
    or an expired one.
    """
    try:
        return jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError as exc:
        logger.debug("JWT decode failed: %s", exc)
        raise InvalidOrExpiredCredential(detail=str(exc)) from exc


def parse_token_claims(payload: dict[str, Any]) -> TokenClaims:
    """Validate the payload shape. Raises MalformedCredential on mismatch."""
    try:
        return TokenClaims.model_validate(payload)
    except PydanticValidationError as exc:
        raise MalformedCredential(detail=str(exc.errors(include_url=False))) from exc


# ---------------------------------------------------------------------------
# User authentication (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_user(store: AuthStore, username: str, password: str) -> User | None:
    """Authenticate a username/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.get_user_by_username(username)
    if user is None or not user.hashed_password:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# API key generation and hashing
# ---------------------------------------------------------------------------


def generate_api_key() -> str:
    """Generate a new raw API key in the format: pg_<64 hex chars>."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"


def hash_api_key(raw_key: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_key) as a hex string.

    An attacker holding a copy of the DB cannot test guesses offline without
    also knowing SECRET_KEY.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        raw_key.encode(),
        hashlib.sha256,
    ).hexdigest()


def generate_public_id(entity_type: str = "obj") -> str:
    """Return a short, URL-safe external id such as "user_5f2d9a7e9b3c41d0"."""
    prefix = re.sub(r"\s+", "_", entity_type).lower()
    return f"{prefix}_{secrets.token_hex(8)}"


# ---------------------------------------------------------------------------
# Webhook signatures
# ---------------------------------------------------------------------------


def sign_payload(secret: str, body: bytes) -> str:
    """Return base64(HMAC-SHA256(secret, body)), the signature webhook senders attach."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_hmac_signature(secret: str, body: bytes, signature: str) -> bool:
    """Constant-time check of a base64 HMAC-SHA256 signature over the raw body."""
    expected = sign_payload(secret, body)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("ascii", "ignore"))
