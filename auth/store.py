"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository;
_row_to_role / _row_to_user / _row_to_api_key are the mappers. Resolver,
evaluator, issuance and route code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Role permission flags are stored one column per Permission. Column names
  come from auth.permissions.FLAG_COLUMNS, never from request input.

  token_version is incremented inside the same UPDATE that changes the
  password or role, so there is no window where the new credential is live
  but old tokens still verify.

DB path: auth/permgate_auth.db unless AUTH_DB_URL says otherwise.

Layer rule: no imports from api/, core/, or catalog/.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import ApiKey, Role, User
from auth.permissions import FLAG_COLUMNS, FLAG_DEFAULTS, Permission, is_flag_set
from core.config import now_iso

logger = logging.getLogger("permgate.auth")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'permgate_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    *(
        Column(column, Integer, nullable=False, server_default="1" if FLAG_DEFAULTS[perm] else "0")
        for perm, column in FLAG_COLUMNS.items()
    ),
    Column("created_at", String(32)),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("public_id", String(64), nullable=False, unique=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("role_id", Integer, nullable=False, index=True),
    Column("token_version", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_api_keys = Table(
    "api_keys",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("public_id", String(64), nullable=False, unique=True),
    Column("key_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("name", String(100), nullable=False),
    Column("owner_user_id", Integer, nullable=False, index=True),
    Column("permissions", Text),  # JSON array of permission names
    Column("disabled", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

# Roles created on first startup. ids follow insertion order (admin=1 ... ban=4).
_USER_FLAGS = frozenset(p for p, on in FLAG_DEFAULTS.items() if on)
SEED_ROLES: dict[str, frozenset[Permission]] = {
    "admin": frozenset(Permission),
    "user": _USER_FLAGS,
    "premium": _USER_FLAGS | {Permission.GET_BESTSELLERS, Permission.UPLOAD_MEDIA},
    "ban": frozenset(),
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _flag_values(granted: frozenset[Permission]) -> dict[str, int]:
    return {column: 1 if perm in granted else 0 for perm, column in FLAG_COLUMNS.items()}


def _parse_permissions(raw: str | None) -> list[str]:
    """Decode the stored JSON permission list.

    Absent, malformed or non-list values decode to an empty list; non-string
    entries are dropped.
    """
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding malformed API key permission list")
        return []
    if not isinstance(value, list):
        return []
    return [p for p in value if isinstance(p, str)]


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for Role, User and ApiKey entities.

    Usage:
        store = AuthStore()
        role = store.get_role_by_name("user")
        uid = store.create_user(User(username="alice", email="a@x.io", role_id=role.id, ...))
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self.seed_roles()

    def seed_roles(self) -> None:
        """Insert the default roles that do not exist yet. Idempotent."""
        with self.engine.connect() as conn:
            existing = {row.name for row in conn.execute(_roles.select())}
            for name, granted in SEED_ROLES.items():
                if name in existing:
                    continue
                conn.execute(_roles.insert().values(name=name, created_at=now_iso(), **_flag_values(granted)))
                logger.info("Seeded role '%s'", name)
            conn.commit()

    # ------------------------------------------------------------------
    # Role queries
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> int:
        """Insert a role (administrative migration only). Returns its ID.

        Raises sqlalchemy.exc.IntegrityError if the name already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _roles.insert().values(name=role.name, created_at=now_iso(), **_flag_values(role.granted))
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_role(self, role_id: int) -> Role | None:
        """Look up a role by primary key. Always a fresh read."""
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.id)).fetchall()
        return [_row_to_role(r) for r in rows]

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def has_users(self) -> bool:
        """Return True if at least one user exists. POST /auth/setup uses this to detect first run."""
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username, email or
        public_id already exists. Callers report that generically, without
        saying which field collided.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    public_id=user.public_id,
                    username=user.username,
                    hashed_password=user.hashed_password,
                    email=user.email,
                    role_id=user.role_id,
                    token_version=user.token_version if user.token_version is not None else 0,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_user_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_public_id(self, public_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.public_id == public_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Store a new password hash and invalidate every outstanding token.

        Returns True if a row was updated, False if user_id was not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(hashed_password=hashed_password, token_version=_users.c.token_version + 1)
            )
            conn.commit()
        return result.rowcount > 0

    def change_role(self, user_id: int, role_id: int) -> bool:
        """Move a user to another role and invalidate every outstanding token."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(role_id=role_id, token_version=_users.c.token_version + 1)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Delete a user and every API key they own, in one transaction.

        Returns True if the user existed.
        """
        with self.engine.begin() as conn:
            conn.execute(_api_keys.delete().where(_api_keys.c.owner_user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # API key queries
    # ------------------------------------------------------------------

    def create_api_key(self, api_key: ApiKey) -> ApiKey:
        """Insert a new API key record and return it with id and created_at set."""
        created_at = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.insert().values(
                    public_id=api_key.public_id,
                    key_hash=api_key.key_hash,
                    name=api_key.name,
                    owner_user_id=api_key.owner_user_id,
                    permissions=json.dumps(list(api_key.permissions)),
                    disabled=1 if api_key.disabled else 0,
                    created_at=created_at,
                )
            )
            conn.commit()
            key_id = result.inserted_primary_key[0]
        return ApiKey(
            id=key_id,
            public_id=api_key.public_id,
            owner_user_id=api_key.owner_user_id,
            name=api_key.name,
            key_hash=api_key.key_hash,
            permissions=list(api_key.permissions),
            disabled=api_key.disabled,
            created_at=created_at,
        )

    def get_api_key_by_hash(self, key_hash: str) -> ApiKey | None:
        """Look up an API key by its HMAC hash, disabled or not. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_api_keys.select().where(_api_keys.c.key_hash == key_hash)).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def list_api_keys(self, owner_user_id: int) -> list[ApiKey]:
        """Return every key owned by a user, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _api_keys.select()
                .where(_api_keys.c.owner_user_id == owner_user_id)
                .order_by(_api_keys.c.id)
            ).fetchall()
        return [_row_to_api_key(r) for r in rows]

    def delete_api_keys(self, public_ids: list[str], owner_user_id: int) -> int:
        """Delete keys by public id. Only the owner's keys match [IDOR guard].

        Returns the number of keys deleted.
        """
        if not public_ids:
            return 0
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.delete().where(
                    (_api_keys.c.public_id.in_(public_ids)) & (_api_keys.c.owner_user_id == owner_user_id)
                )
            )
            conn.commit()
        return result.rowcount

    def set_api_key_disabled(self, public_id: str, owner_user_id: int, disabled: bool) -> bool:
        """Enable or disable one of the owner's keys. False if not found or wrong owner."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.update()
                .where((_api_keys.c.public_id == public_id) & (_api_keys.c.owner_user_id == owner_user_id))
                .values(disabled=1 if disabled else 0)
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_role(row) -> Role:
    values = row._mapping
    return Role(
        id=row.id,
        name=row.name,
        granted=frozenset(perm for perm, column in FLAG_COLUMNS.items() if is_flag_set(values.get(column))),
    )


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        public_id=row.public_id,
        username=row.username,
        hashed_password=row.hashed_password,
        email=row.email,
        role_id=row.role_id,
        token_version=row.token_version,
        created_at=row.created_at,
    )


def _row_to_api_key(row) -> ApiKey:
    return ApiKey(
        id=row.id,
        public_id=row.public_id,
        key_hash=row.key_hash,
        name=row.name,
        owner_user_id=row.owner_user_id,
        permissions=_parse_permissions(row.permissions),
        disabled=bool(row.disabled),
        created_at=row.created_at,
    )
