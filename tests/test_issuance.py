"""
tests/test_issuance.py -- Unit tests for API key issuance.

Covers:
  - issued permissions are always a subset of the creator's effective set
  - escalation lists exactly the requested-but-not-held names and writes nothing
  - "all" expansion for admins, other users and API-key creators
  - admin requests for unknown names are validation errors
  - a storage failure mid-batch reports the keys already created
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import EscalationDenied, StorageFailure, ValidationError
from auth.issuance import KeySpec, creator_context, finalize_permissions, issue_keys
from auth.models import ApiKeyPrincipal, Role, User, UserPrincipal
from auth.permissions import ALL_PERMISSIONS, FLAG_DEFAULTS, Permission
from auth.resolver import resolve_api_key
from auth.store import AuthStore
from conftest import make_user

USER_DEFAULTS = {p.value for p, on in FLAG_DEFAULTS.items() if on}


def _user(store: AuthStore, username: str, role_name: str) -> UserPrincipal:
    user = make_user(store, username, role_name=role_name)
    return UserPrincipal(user.id, user.public_id, user.username, user.role_id, user.token_version)


class TestCreatorContext:
    def test_admin(self, auth_store: AuthStore) -> None:
        ctx = creator_context(auth_store, _user(auth_store, "root", "admin"))
        assert ctx.is_admin
        assert set(ctx.effective) == set(ALL_PERMISSIONS)

    def test_regular_user(self, auth_store: AuthStore) -> None:
        ctx = creator_context(auth_store, _user(auth_store, "alice", "user"))
        assert not ctx.is_admin
        assert set(ctx.effective) == USER_DEFAULTS

    def test_api_key_creator_is_never_admin(self, auth_store: AuthStore) -> None:
        key = ApiKeyPrincipal(user_id=1, key_public_id="api_key_x", key_name="x", permissions=("get_my_user",))
        ctx = creator_context(auth_store, key)
        assert not ctx.is_admin
        assert ctx.effective == ("get_my_user",)

    def test_legacy_wildcard_key_creator(self, auth_store: AuthStore) -> None:
        key = ApiKeyPrincipal(user_id=1, key_public_id="api_key_x", key_name="x", permissions=("all",))
        assert creator_context(auth_store, key).effective == ALL_PERMISSIONS


class TestFinalizePermissions:
    def test_none_means_empty(self, auth_store: AuthStore) -> None:
        ctx = creator_context(auth_store, _user(auth_store, "alice", "user"))
        assert finalize_permissions(ctx, None) == []

    def test_wildcard_for_non_admin(self, auth_store: AuthStore) -> None:
        ctx = creator_context(auth_store, _user(auth_store, "alice", "user"))
        assert set(finalize_permissions(ctx, ["all", "get_users"])) == USER_DEFAULTS

    def test_non_string_entry(self, auth_store: AuthStore) -> None:
        ctx = creator_context(auth_store, _user(auth_store, "alice", "user"))
        with pytest.raises(ValidationError):
            finalize_permissions(ctx, ["get_my_user", 5])

    def test_not_a_list(self, auth_store: AuthStore) -> None:
        ctx = creator_context(auth_store, _user(auth_store, "alice", "user"))
        with pytest.raises(ValidationError):
            finalize_permissions(ctx, "get_my_user")

    def test_duplicates_removed(self, auth_store: AuthStore) -> None:
        ctx = creator_context(auth_store, _user(auth_store, "alice", "user"))
        assert finalize_permissions(ctx, ["get_my_user", "get_my_user"]) == ["get_my_user"]


class TestIssueKeys:
    def test_admin_wildcard_expands_to_everything(self, auth_store: AuthStore) -> None:
        root = _user(auth_store, "root", "admin")
        [issued] = issue_keys(auth_store, root, [KeySpec(name="ci-bot", permissions=["all"])])
        assert issued.permissions == list(ALL_PERMISSIONS)
        assert issued.raw_key.startswith("pg_")
        stored = auth_store.list_api_keys(root.user_id)
        assert "all" not in stored[0].permissions

    def test_issued_key_resolves(self, auth_store: AuthStore) -> None:
        alice = _user(auth_store, "alice", "user")
        [issued] = issue_keys(auth_store, alice, [KeySpec(name="cli", permissions=["get_my_user"])])
        principal = resolve_api_key(auth_store, issued.raw_key)
        assert principal.user_id == alice.user_id
        assert principal.permissions == ("get_my_user",)

    def test_escalation_lists_offenders_and_writes_nothing(self, auth_store: AuthStore) -> None:
        alice = _user(auth_store, "alice", "user")
        specs = [
            KeySpec(name="ok", permissions=["get_my_user"]),
            KeySpec(name="greedy", permissions=["get_users", "upload_media", "get_my_user"]),
            KeySpec(name="greedy-2", permissions=["get_users"]),
        ]
        with pytest.raises(EscalationDenied) as excinfo:
            issue_keys(auth_store, alice, specs)
        assert excinfo.value.invalid_permissions == ["get_users", "upload_media"]
        assert auth_store.list_api_keys(alice.user_id) == []

    def test_subset_property(self, auth_store: AuthStore) -> None:
        """Whatever a non-admin asks for, every stored key stays inside its role."""
        alice = _user(auth_store, "alice", "user")
        requests = [["all"], ["get_my_user", "post_products"], [], None]
        issued = issue_keys(auth_store, alice, [KeySpec(name=f"k{i}", permissions=r) for i, r in enumerate(requests)])
        assert len(issued) == len(requests)
        for key in auth_store.list_api_keys(alice.user_id):
            assert set(key.permissions) <= USER_DEFAULTS

    def test_key_cannot_escalate_beyond_itself(self, auth_store: AuthStore) -> None:
        root = make_user(auth_store, "root", role_name="admin")
        creator = ApiKeyPrincipal(
            user_id=root.id, key_public_id="api_key_p", key_name="p", permissions=("get_my_user",)
        )
        with pytest.raises(EscalationDenied) as excinfo:
            issue_keys(auth_store, creator, [KeySpec(name="child", permissions=["get_users"])])
        assert excinfo.value.invalid_permissions == ["get_users"]

    def test_key_creates_for_its_owner(self, auth_store: AuthStore) -> None:
        alice = make_user(auth_store, "alice")
        creator = ApiKeyPrincipal(
            user_id=alice.id, key_public_id="api_key_p", key_name="p", permissions=("create_api_keys", "get_my_user")
        )
        [issued] = issue_keys(auth_store, creator, [KeySpec(name="child", permissions=["all"])])
        assert issued.permissions == ["create_api_keys", "get_my_user"]
        assert [k.name for k in auth_store.list_api_keys(alice.id)] == ["child"]

    def test_admin_unknown_name_is_validation_error(self, auth_store: AuthStore) -> None:
        root = _user(auth_store, "root", "admin")
        with pytest.raises(ValidationError):
            issue_keys(auth_store, root, [KeySpec(name="bad", permissions=["launch_rockets"])])
        assert auth_store.list_api_keys(root.user_id) == []

    def test_blank_name(self, auth_store: AuthStore) -> None:
        alice = _user(auth_store, "alice", "user")
        with pytest.raises(ValidationError):
            issue_keys(auth_store, alice, [KeySpec(name="  ")])

    def test_storage_failure_reports_partial_batch(self, auth_store: AuthStore, monkeypatch) -> None:
        alice = _user(auth_store, "alice", "user")
        real_create = auth_store.create_api_key
        calls = {"n": 0}

        def flaky_create(api_key):
            calls["n"] += 1
            if calls["n"] == 2:
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            return real_create(api_key)

        monkeypatch.setattr(auth_store, "create_api_key", flaky_create)
        specs = [KeySpec(name="first"), KeySpec(name="second"), KeySpec(name="third")]
        with pytest.raises(StorageFailure) as excinfo:
            issue_keys(auth_store, alice, specs)
        assert [k["name"] for k in excinfo.value.created] == ["first"]
        assert "raw_key" in excinfo.value.created[0]
        assert [k.name for k in auth_store.list_api_keys(alice.user_id)] == ["first"]


class TestNarrowRole:
    def test_single_permission_role_escalation(self, auth_store: AuthStore) -> None:
        """Effective set {post_products}: asking for get_users too reports exactly get_users."""
        rid = auth_store.create_role(Role(name="poster", granted=frozenset({Permission.POST_PRODUCTS})))
        user = User(username="poe", email="poe@example.com", role_id=rid, public_id="user_poe")
        user.id = auth_store.create_user(user)
        creator = UserPrincipal(user.id, user.public_id, user.username, rid, 0)

        with pytest.raises(EscalationDenied) as excinfo:
            issue_keys(auth_store, creator, [KeySpec(name="k", permissions=["post_products", "get_users"])])
        assert excinfo.value.invalid_permissions == ["get_users"]
        assert auth_store.list_api_keys(user.id) == []

    def test_raw_key_never_stored(self, auth_store: AuthStore) -> None:
        alice = _user(auth_store, "alice", "user")
        [issued] = issue_keys(auth_store, alice, [KeySpec(name="k")])
        [stored] = auth_store.list_api_keys(alice.user_id)
        assert stored.key_hash != issued.raw_key
        assert issued.raw_key not in stored.key_hash
