"""
tests/test_evaluator.py -- Unit tests for permission gate evaluation.

Covers:
  - gates are OR: any one entry grants, regardless of order
  - banned roles are denied everything, including role:ban
  - API keys never satisfy role gates, even when owned by an admin
  - a legacy "all" on a stored key still acts as a wildcard
  - role changes take effect on the next call (fresh role read)
"""

from __future__ import annotations

import itertools

import pytest

from auth.errors import Forbidden
from auth.evaluator import authorize, is_allowed
from auth.models import ApiKeyPrincipal, UserPrincipal
from auth.store import AuthStore
from conftest import make_user


def _principal(store: AuthStore, username: str, role_name: str) -> UserPrincipal:
    user = make_user(store, username, role_name=role_name)
    return UserPrincipal(
        user_id=user.id,
        public_id=user.public_id,
        username=user.username,
        role_id=user.role_id,
        token_version=user.token_version,
    )


def _key(permissions: tuple[str, ...], owner: int = 1) -> ApiKeyPrincipal:
    return ApiKeyPrincipal(user_id=owner, key_public_id="api_key_t", key_name="t", permissions=permissions)


class TestUserGates:
    def test_granted_permission(self, auth_store: AuthStore) -> None:
        alice = _principal(auth_store, "alice", "user")
        assert is_allowed(auth_store, alice, ["post_products"])

    def test_missing_permission(self, auth_store: AuthStore) -> None:
        alice = _principal(auth_store, "alice", "user")
        assert not is_allowed(auth_store, alice, ["get_products"])

    def test_gate_is_or_in_any_order(self, auth_store: AuthStore) -> None:
        alice = _principal(auth_store, "alice", "user")
        gate = ["get_users", "role:admin", "get_my_user"]
        for order in itertools.permutations(gate):
            assert is_allowed(auth_store, alice, list(order)), f"denied for order {order}"

    def test_empty_gate_denies(self, auth_store: AuthStore) -> None:
        alice = _principal(auth_store, "alice", "admin")
        assert not is_allowed(auth_store, alice, [])

    def test_role_gate_case_insensitive(self, auth_store: AuthStore) -> None:
        root = _principal(auth_store, "root", "admin")
        assert is_allowed(auth_store, root, ["role:ADMIN"])

    def test_role_gate_other_role(self, auth_store: AuthStore) -> None:
        alice = _principal(auth_store, "alice", "user")
        assert not is_allowed(auth_store, alice, ["role:admin"])

    def test_unknown_permission_never_matches(self, auth_store: AuthStore) -> None:
        root = _principal(auth_store, "root", "admin")
        assert not is_allowed(auth_store, root, ["launch_rockets"])
        assert not is_allowed(auth_store, root, ["all"])

    def test_banned_denied_everything(self, auth_store: AuthStore) -> None:
        mallory = _principal(auth_store, "mallory", "ban")
        assert not is_allowed(auth_store, mallory, ["get_my_user", "post_login"])
        assert not is_allowed(auth_store, mallory, ["role:ban"])

    def test_missing_role_denies(self, auth_store: AuthStore) -> None:
        ghost = UserPrincipal(user_id=99, public_id="user_x", username="ghost", role_id=999, token_version=0)
        assert not is_allowed(auth_store, ghost, ["get_my_user"])

    def test_role_change_seen_immediately(self, auth_store: AuthStore) -> None:
        """The role row is read on every call, so a demotion applies at once."""
        bob = _principal(auth_store, "bob", "premium")
        assert is_allowed(auth_store, bob, ["upload_media"])
        auth_store.change_role(bob.user_id, auth_store.get_role_by_name("user").id)
        demoted = UserPrincipal(bob.user_id, bob.public_id, bob.username, auth_store.get_role_by_name("user").id, 1)
        assert not is_allowed(auth_store, demoted, ["upload_media"])


class TestApiKeyGates:
    def test_listed_permission(self, auth_store: AuthStore) -> None:
        assert is_allowed(auth_store, _key(("get_my_user",)), ["get_my_user"])

    def test_unlisted_permission(self, auth_store: AuthStore) -> None:
        assert not is_allowed(auth_store, _key(("get_my_user",)), ["get_users"])

    def test_role_gate_never_matches(self, auth_store: AuthStore) -> None:
        root = make_user(auth_store, "root", role_name="admin")
        key = _key(("get_users",), owner=root.id)
        assert not is_allowed(auth_store, key, ["role:admin"])
        assert is_allowed(auth_store, key, ["role:admin", "get_users"])

    def test_legacy_wildcard(self, auth_store: AuthStore) -> None:
        key = _key(("all",))
        assert is_allowed(auth_store, key, ["get_products"])
        assert not is_allowed(auth_store, key, ["role:admin"])

    def test_empty_key_denied(self, auth_store: AuthStore) -> None:
        assert not is_allowed(auth_store, _key(()), ["get_my_user"])


class TestAuthorize:
    def test_raises_generic_forbidden(self, auth_store: AuthStore) -> None:
        alice = _principal(auth_store, "alice", "user")
        with pytest.raises(Forbidden) as excinfo:
            authorize(auth_store, alice, ["get_users"])
        assert excinfo.value.message == "Insufficient permissions."
        assert excinfo.value.status_code == 403

    def test_allow_returns_none(self, auth_store: AuthStore) -> None:
        alice = _principal(auth_store, "alice", "user")
        assert authorize(auth_store, alice, ["get_my_user"]) is None

    def test_unknown_principal_type(self, auth_store: AuthStore) -> None:
        with pytest.raises(TypeError):
            is_allowed(auth_store, object(), ["get_my_user"])
