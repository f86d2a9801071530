"""Tests for Pearl records and namespace helpers."""

from datetime import UTC, datetime

import pytest

from pearls.errors import ValidationError
from pearls.models import (
    AssetType,
    ConnectionInfo,
    Pearl,
    Status,
    is_child_of,
    last_segment,
    namespace_depth,
    parent_namespace,
    parse_namespace,
    split_id,
)


# ---------------------------------------------------------------------------
# Namespaces
# ---------------------------------------------------------------------------


class TestParseNamespace:
    def test_segments(self):
        assert parse_namespace("db.postgres.users") == ["db", "postgres", "users"]

    def test_single_segment(self):
        assert parse_namespace("readme") == ["readme"]

    def test_hyphen_and_underscore(self):
        assert parse_namespace("api.user-service.order_items") == ["api", "user-service", "order_items"]

    @pytest.mark.parametrize("bad", ["", "DB.users", "db..users", "1db.users", "db.users.", "db.us ers"])
    def test_invalid(self, bad):
        with pytest.raises(ValidationError):
            parse_namespace(bad)

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_namespace("Bad")


class TestNamespaceHelpers:
    def test_parent(self):
        assert parent_namespace("db.postgres.users") == "db.postgres"
        assert parent_namespace("db") == ""

    def test_parent_of_invalid_is_empty(self):
        assert parent_namespace("db..x") == ""

    def test_last_segment(self):
        assert last_segment("db.postgres.users") == "users"

    def test_depth(self):
        assert namespace_depth("db.postgres.users") == 3
        assert namespace_depth("BAD") == 0

    def test_is_child_of(self):
        assert is_child_of("db.postgres.users", "db")
        assert is_child_of("db.postgres.users", "db.postgres")
        assert not is_child_of("dbx.users", "db")
        assert not is_child_of("db", "db")
        assert is_child_of("anything", "")

    def test_split_id(self):
        assert split_id("db.postgres.users") == ("db.postgres", "users")
        assert split_id("top") == ("", "top")


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestStatus:
    def test_parse(self):
        assert Status.parse("archived") is Status.ARCHIVED

    def test_parse_invalid(self):
        with pytest.raises(ValidationError, match="invalid status"):
            Status.parse("gone")


class TestAssetType:
    def test_open_set(self):
        assert AssetType("brainstorm") == "brainstorm"
        assert AssetType.is_valid("design-doc")

    @pytest.mark.parametrize("bad", ["", "Table", "my_type", "9lives"])
    def test_invalid(self, bad):
        assert not AssetType.is_valid(bad)
        with pytest.raises(ValidationError):
            AssetType(bad)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class TestPearl:
    def test_new_derives_name_and_namespace(self):
        p = Pearl.new("db.postgres.users", "table", created_by="me")
        assert p.name == "users"
        assert p.namespace == "db.postgres"
        assert p.full_id == "db.postgres.users"
        assert p.status == Status.ACTIVE
        assert p.created_at == p.updated_at
        assert p.created_by == "me"

    def test_new_rejects_bad_type(self):
        with pytest.raises(ValidationError):
            Pearl.new("db.users", "Not A Type")

    def test_validate_namespace_mismatch(self):
        p = Pearl.new("db.users", created_by="me")
        p.namespace = "other"
        with pytest.raises(ValidationError, match="does not form the ID"):
            p.validate()

    def test_validate_bad_glob(self):
        p = Pearl.new("db.users", created_by="me", globs=["src/[abc"])
        with pytest.raises(ValidationError, match="glob"):
            p.validate()

    def test_validate_bad_scope(self):
        p = Pearl.new("db.users", created_by="me", scopes=["Payments"])
        with pytest.raises(ValidationError, match="scope"):
            p.validate()

    def test_validate_bad_status(self):
        p = Pearl.new("db.users", created_by="me")
        p.status = "retired"
        with pytest.raises(ValidationError):
            p.validate()

    def test_to_dict_omits_empty_optionals(self):
        d = Pearl.new("db.users", created_by="me").to_dict()
        for key in ("globs", "scopes", "references", "parent", "connection", "required", "priority"):
            assert key not in d
        assert d["tags"] == []
        assert d["status"] == "active"

    def test_dict_round_trip(self):
        p = Pearl.new(
            "db.postgres.users",
            "table",
            created_by="me",
            description="Users",
            tags=["core", "pii"],
            globs=["src/models/**"],
            scopes=["auth"],
            references=["db.postgres.orders"],
            parent="db.postgres",
            connection=ConnectionInfo(type="postgres", host="${DB_HOST}", port=5432, database="app"),
            required=True,
            priority=7,
        )
        back = Pearl.from_dict(p.to_dict())
        assert back == p

    def test_from_dict_defaults(self):
        p = Pearl.from_dict({"id": "x", "name": "x"})
        assert p.status == "active"
        assert p.created_at == datetime.fromtimestamp(0, UTC)
        assert p.connection is None

    def test_naive_timestamps_are_utc(self):
        p = Pearl.from_dict({"id": "x", "name": "x", "created_at": "2024-01-02T03:04:05"})
        assert p.created_at.tzinfo is not None


class TestConnectionInfo:
    def test_summary(self):
        c = ConnectionInfo(type="postgres", host="${DB_HOST}", database="app")
        assert c.summary() == "postgres @ ${DB_HOST}/app"

    def test_extras_round_trip(self):
        c = ConnectionInfo(type="api", extras={"auth": "bearer"})
        assert ConnectionInfo.from_dict(c.to_dict()) == c
