"""
auth/permissions.py -- The closed vocabulary of permissions.

Every protected operation is guarded by a list of requirement strings. A
requirement is either a plain permission name ("post_products") or a role
gate ("role:admin").

Each Permission maps to exactly one boolean flag column on the roles table.
The mapping is an explicit table rather than "can_" + name string building,
so adding a permission means adding an enum member AND a FLAG_COLUMNS entry
(tests/test_permissions.py fails if the two drift apart).

Layer rule: no imports from api/, core/, or catalog/.
"""

from __future__ import annotations

from enum import Enum


class Permission(str, Enum):
    GET_MY_USER = "get_my_user"
    GET_USERS = "get_users"
    POST_LOGIN = "post_login"
    POST_PRODUCTS = "post_products"
    GET_PRODUCTS = "get_products"
    GET_MY_PRODUCTS = "get_my_products"
    GET_BESTSELLERS = "get_bestsellers"
    UPLOAD_MEDIA = "upload_media"
    CREATE_API_KEYS = "create_api_keys"
    READ_API_KEYS = "read_api_keys"
    DELETE_API_KEYS = "delete_api_keys"


FLAG_COLUMNS: dict[Permission, str] = {
    Permission.GET_MY_USER: "can_get_my_user",
    Permission.GET_USERS: "can_get_users",
    Permission.POST_LOGIN: "can_post_login",
    Permission.POST_PRODUCTS: "can_post_products",
    Permission.GET_PRODUCTS: "can_get_products",
    Permission.GET_MY_PRODUCTS: "can_get_my_products",
    Permission.GET_BESTSELLERS: "can_get_bestsellers",
    Permission.UPLOAD_MEDIA: "can_upload_media",
    Permission.CREATE_API_KEYS: "can_create_api_keys",
    Permission.READ_API_KEYS: "can_read_api_keys",
    Permission.DELETE_API_KEYS: "can_delete_api_keys",
}

# Flag value a new role row gets when the column is not set explicitly.
FLAG_DEFAULTS: dict[Permission, bool] = {
    Permission.GET_MY_USER: True,
    Permission.GET_USERS: False,
    Permission.POST_LOGIN: True,
    Permission.POST_PRODUCTS: True,
    Permission.GET_PRODUCTS: False,
    Permission.GET_MY_PRODUCTS: True,
    Permission.GET_BESTSELLERS: False,
    Permission.UPLOAD_MEDIA: False,
    Permission.CREATE_API_KEYS: True,
    Permission.READ_API_KEYS: True,
    Permission.DELETE_API_KEYS: True,
}

# Every known permission name, in declaration order.
ALL_PERMISSIONS: tuple[str, ...] = tuple(p.value for p in Permission)

WILDCARD = "all"
ROLE_GATE_PREFIX = "role:"

ADMIN_ROLE = "admin"
BANNED_ROLE = "ban"


def parse_permission(name: str) -> Permission | None:
    """Return the Permission for *name*, or None if the name is not known."""
    try:
        return Permission(name)
    except ValueError:
        return None


def role_gate_target(requirement: str) -> str | None:
    """Return the lowercased role name of a "role:<name>" gate, else None."""
    if requirement.startswith(ROLE_GATE_PREFIX):
        return requirement[len(ROLE_GATE_PREFIX) :].lower()
    return None


def is_flag_set(value: object) -> bool:
    """Decode a stored flag value.

    Accepted truthy encodings: integer 1, string "1", boolean True and the
    string "TRUE" in any case. Everything else (0, None, "", "yes") is False.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value == 1
    if isinstance(value, str):
        return value == "1" or value.upper() == "TRUE"
    return False
