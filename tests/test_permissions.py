"""
tests/test_permissions.py -- Unit tests for the permission vocabulary.

Covers:
  - every Permission has exactly one flag column and one default
  - flag column names are unique
  - stored flag encodings decode as documented
  - role gate parsing
"""

from __future__ import annotations

import pytest

from auth.permissions import (
    ALL_PERMISSIONS,
    FLAG_COLUMNS,
    FLAG_DEFAULTS,
    Permission,
    is_flag_set,
    parse_permission,
    role_gate_target,
)


class TestFlagTable:
    def test_every_permission_has_a_column(self) -> None:
        """Adding an enum member without a FLAG_COLUMNS entry must fail here."""
        assert set(FLAG_COLUMNS) == set(Permission)

    def test_every_permission_has_a_default(self) -> None:
        assert set(FLAG_DEFAULTS) == set(Permission)

    def test_columns_are_unique(self) -> None:
        columns = list(FLAG_COLUMNS.values())
        assert len(columns) == len(set(columns)), "Two permissions share a flag column"

    def test_all_permissions_matches_enum_order(self) -> None:
        assert ALL_PERMISSIONS == tuple(p.value for p in Permission)
        assert "all" not in ALL_PERMISSIONS


class TestIsFlagSet:
    @pytest.mark.parametrize("value", [1, "1", True, "TRUE", "true", "True"])
    def test_truthy_encodings(self, value) -> None:
        assert is_flag_set(value) is True

    @pytest.mark.parametrize("value", [0, 2, -1, "0", "", "yes", "on", False, None, 1.0, b"1"])
    def test_everything_else_is_false(self, value) -> None:
        assert is_flag_set(value) is False


class TestParsing:
    def test_parse_known_permission(self) -> None:
        assert parse_permission("upload_media") is Permission.UPLOAD_MEDIA

    def test_parse_unknown_permission(self) -> None:
        assert parse_permission("launch_rockets") is None
        assert parse_permission("all") is None

    def test_role_gate_target_is_lowercased(self) -> None:
        assert role_gate_target("role:Admin") == "admin"

    def test_plain_name_is_not_a_role_gate(self) -> None:
        assert role_gate_target("get_users") is None
