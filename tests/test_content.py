"""Tests for ContentStore and content templates."""

import pytest

from pearls.content import ContentStore, hash_bytes, hash_text, template_for
from pearls.errors import NotFoundError
from pearls.models import Pearl


@pytest.fixture
def content(tmp_path):
    return ContentStore(tmp_path / "content")


class TestPaths:
    def test_path_for_nested(self):
        assert ContentStore.path_for("db.postgres", "users") == "db/postgres/users.md"

    def test_path_for_top_level(self):
        assert ContentStore.path_for("", "readme") == "readme.md"


class TestReadWrite:
    def test_write_then_read(self, content):
        content.write("db/users.md", "# users\n")
        assert content.read("db/users.md") == "# users\n"
        assert content.exists("db/users.md")
        assert (content.base_dir / "db" / "users.md").is_file()

    def test_hash_matches_hash_text(self, content):
        content.write("a.md", "hello")
        assert content.hash("a.md") == hash_text("hello") == hash_bytes(b"hello")
        assert len(content.hash("a.md")) == 64

    def test_read_missing(self, content):
        with pytest.raises(NotFoundError):
            content.read("nope.md")
        with pytest.raises(NotFoundError):
            content.hash("nope.md")
        assert content.read_bytes("nope.md") is None
        assert not content.exists("nope.md")

    def test_write_bytes(self, content):
        content.write_bytes("x/y.md", b"raw\r\n")
        assert content.read_bytes("x/y.md") == b"raw\r\n"

    def test_delete_is_idempotent(self, content):
        content.write("a.md", "x")
        content.delete("a.md")
        content.delete("a.md")
        assert not content.exists("a.md")

    def test_list_files(self, content):
        content.write("db/users.md", "u")
        content.write("top.md", "t")
        (content.base_dir / "notes.txt").write_text("ignored")
        assert content.list_files() == {"db/users.md", "top.md"}

    def test_list_files_without_base_dir(self, tmp_path):
        assert ContentStore(tmp_path / "missing").list_files() == set()


class TestTemplates:
    def test_table_template(self):
        p = Pearl.new("db.users", "table", created_by="me", description="Registered users")
        body = template_for(p)
        assert body.startswith("# users\n\nRegistered users\n\n")
        assert "## Schema" in body
        assert "## Access Patterns" in body

    def test_endpoint_uses_api_sections(self):
        p = Pearl.new("api.users.list", "endpoint", created_by="me")
        assert "## Authentication" in template_for(p)

    def test_custom_type_gets_generic_sections(self):
        p = Pearl.new("notes.design", "brainstorm", created_by="me")
        body = template_for(p)
        assert body.startswith("# design\n\n## Overview")
        assert "## Notes" in body
