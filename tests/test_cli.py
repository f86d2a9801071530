"""End-to-end tests for the pearls CLI via click's CliRunner."""

import json
import os
import sqlite3

import pytest
from click.testing import CliRunner

from pearls.cli import cli
from pearls.onboard import MARKER_START


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def repo(tmp_path, runner):
    result = runner.invoke(cli, ["-C", str(tmp_path), "init", "-q"])
    assert result.exit_code == 0, result.output
    return tmp_path


@pytest.fixture
def pl(runner, repo):
    """Invoke the CLI inside the test repo."""

    def invoke(*args, **kwargs):
        return runner.invoke(cli, ["-C", str(repo), *args], **kwargs)

    return invoke


def ok(result):
    assert result.exit_code == 0, result.output
    return result.output


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


class TestInit:
    def test_creates_layout(self, runner, tmp_path):
        out = ok(runner.invoke(cli, ["-C", str(tmp_path), "init", "--name", "demo"]))
        assert "✓ Created" in out
        assert "pearls create db.postgres.users --type table" in out
        assert (tmp_path / ".pearls" / "pearls.db").is_file()
        assert (tmp_path / ".pearls" / "pearls.jsonl").is_file()

    def test_already_initialized(self, pl, repo):
        out = ok(pl("init"))
        assert "Already initialized" in out

    def test_outside_catalog(self, runner, tmp_path):
        result = runner.invoke(cli, ["-C", str(tmp_path), "list"])
        assert result.exit_code == 1
        assert "run 'pearls init' first" in result.output


# ---------------------------------------------------------------------------
# create / show / cat / list
# ---------------------------------------------------------------------------


class TestCreate:
    def test_create_and_show(self, pl):
        out = ok(pl("create", "db.postgres.users", "-d", "Registered users", "--tag", "pii,core"))
        assert "✓ Created pearl: db.postgres.users" in out
        assert "Content: db/postgres/users.md" in out

        shown = ok(pl("show", "db.postgres.users"))
        assert "● db.postgres.users" in shown
        assert "Namespace:   db.postgres" in shown
        assert "Description: Registered users" in shown
        assert "Tags:        pii, core" in shown

    def test_template_content(self, pl):
        ok(pl("create", "db.users"))
        assert "## Schema" in ok(pl("cat", "db.users"))

    def test_content_from_stdin(self, pl):
        ok(pl("create", "notes.design", "--type", "brainstorm", "--content", "-", input="# Design\nUse queues.\n"))
        assert ok(pl("cat", "notes.design")) == "# Design\nUse queues.\n"

    def test_inline_escapes(self, pl):
        ok(pl("create", "notes.x", "--content", "line1\\nline2"))
        assert ok(pl("cat", "notes.x")) == "line1\nline2"

    def test_json(self, pl):
        out = ok(pl("create", "conv.errors", "-t", "convention", "--globs", "src/**/*.py,lib/**",
                    "--scopes", "errors", "--required", "--priority", "3", "--json"))
        data = json.loads(out)
        assert data["globs"] == ["src/**/*.py", "lib/**"]
        assert data["scopes"] == ["errors"]
        assert data["required"] is True
        assert data["priority"] == 3

    def test_duplicate(self, pl):
        ok(pl("create", "db.users"))
        result = pl("create", "db.users")
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_invalid_id(self, pl):
        result = pl("create", "DB.Users")
        assert result.exit_code == 1
        assert "invalid ID" in result.output

    def test_invalid_glob(self, pl):
        result = pl("create", "db.users", "--globs", "src/[oops")
        assert result.exit_code == 1
        assert "glob" in result.output


class TestShow:
    def test_json_with_refs(self, pl):
        ok(pl("create", "db.users"))
        ok(pl("create", "db.orders"))
        ok(pl("update", "db.orders", "--add-ref", "db.users"))
        data = json.loads(ok(pl("show", "db.orders", "--json", "--with-refs")))
        assert data["pearl"]["references"] == ["db.users"]
        assert [r["id"] for r in data["references"]] == ["db.users"]

    def test_missing(self, pl):
        result = pl("show", "ghost")
        assert result.exit_code == 1
        assert "pearl not found: ghost" in result.output


class TestList:
    def test_table(self, pl):
        ok(pl("create", "db.users", "-d", "x" * 80))
        ok(pl("create", "api.users", "-t", "api"))
        out = ok(pl("list"))
        assert out.splitlines()[0].split() == ["ID", "TYPE", "STATUS", "DESCRIPTION"]
        assert "x" * 47 + "..." in out
        assert out.rstrip().endswith("2 pearl(s)")

    def test_filters_and_json(self, pl):
        ok(pl("create", "db.pg.users"))
        ok(pl("create", "db.pg.orders", "--tag", "billing"))
        ok(pl("create", "api.users", "-t", "api"))
        data = json.loads(ok(pl("list", "-n", "db", "--json")))
        assert data["count"] == 2
        data = json.loads(ok(pl("list", "--tag", "billing", "--json")))
        assert [p["id"] for p in data["pearls"]] == ["db.pg.orders"]
        data = json.loads(ok(pl("list", "-t", "api", "--json")))
        assert data["count"] == 1

    def test_empty(self, pl):
        assert "No pearls found." in ok(pl("list"))

    def test_bad_status(self, pl):
        assert pl("list", "-s", "nope").exit_code == 1


# ---------------------------------------------------------------------------
# update / delete / archive
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_tags_and_fields(self, pl):
        ok(pl("create", "db.users", "--tag", "a,b"))
        out = ok(pl("update", "db.users", "--add-tag", "c", "--remove-tag", "a", "-d", "new",
                    "--status", "deprecated", "--priority", "4", "--required"))
        assert "✓ Updated pearl: db.users" in out
        data = json.loads(ok(pl("show", "db.users", "--json")))["pearl"]
        assert data["tags"] == ["b", "c"]
        assert data["description"] == "new"
        assert data["status"] == "deprecated"
        assert data["priority"] == 4
        assert data["required"] is True
        assert data["updated_at"] >= data["created_at"]

    def test_clear_globs(self, pl):
        ok(pl("create", "db.users", "--globs", "src/**"))
        ok(pl("update", "db.users", "--globs", ""))
        assert "globs" not in json.loads(ok(pl("show", "db.users", "--json")))["pearl"]

    def test_no_required(self, pl):
        ok(pl("create", "db.users", "--required"))
        ok(pl("update", "db.users", "--no-required"))
        assert "required" not in json.loads(ok(pl("show", "db.users", "--json")))["pearl"]

    def test_replace_content(self, pl):
        ok(pl("create", "db.users"))
        ok(pl("update", "db.users", "--content", "-", input="fresh\n"))
        assert ok(pl("cat", "db.users")) == "fresh\n"

    def test_nothing_to_do(self, pl):
        ok(pl("create", "db.users"))
        result = pl("update", "db.users")
        assert result.exit_code == 1
        assert "no updates specified" in result.output

    def test_bad_status(self, pl):
        ok(pl("create", "db.users"))
        result = pl("update", "db.users", "--status", "gone")
        assert result.exit_code == 1
        assert "invalid status" in result.output


class TestDelete:
    def test_default_archives(self, pl):
        ok(pl("create", "db.users"))
        out = ok(pl("delete", "db.users"))
        assert "Archived pearl: db.users" in out
        assert json.loads(ok(pl("show", "db.users", "--json")))["pearl"]["status"] == "archived"

    def test_force(self, pl, repo):
        ok(pl("create", "db.users"))
        out = ok(pl("delete", "db.users", "--force", "--yes"))
        assert "✓ Deleted: db.users" in out
        assert pl("show", "db.users").exit_code == 1
        assert not (repo / ".pearls" / "content" / "db" / "users.md").exists()

    def test_confirmation_declined(self, pl):
        ok(pl("create", "db.users"))
        out = ok(pl("delete", "db.users", "--force", input="n\n"))
        assert "Aborted." in out
        ok(pl("show", "db.users"))

    def test_recursive(self, pl):
        for pid in ("db.pg", "db.pg.users", "db.pg.orders", "db.other"):
            ok(pl("create", pid))
        out = ok(pl("delete", "db.pg", "-f", "-r", "-y"))
        assert out.count("✓ Deleted:") == 3
        data = json.loads(ok(pl("list", "--json")))
        assert [p["id"] for p in data["pearls"]] == ["db.other"]

    def test_recursive_empty_namespace(self, pl):
        result = pl("delete", "nothing.here", "-f", "-r", "-y")
        assert result.exit_code == 1

    def test_archive_command(self, pl):
        ok(pl("create", "db.users"))
        assert "✓ Archived pearl: db.users" in ok(pl("archive", "db.users"))


# ---------------------------------------------------------------------------
# refs / context / clutch / search
# ---------------------------------------------------------------------------


class TestRefs:
    def test_both_directions(self, pl):
        ok(pl("create", "db.users", "-d", "Users"))
        ok(pl("create", "db.orders"))
        ok(pl("update", "db.orders", "--add-ref", "db.users"))
        out = ok(pl("refs", "db.users"))
        assert "Referenced by (incoming):" in out
        assert "← db.orders" in out
        data = json.loads(ok(pl("refs", "db.orders", "--json")))
        assert data == {"id": "db.orders", "references": ["db.users"], "referenced_by": []}

    def test_none(self, pl):
        ok(pl("create", "db.users"))
        assert "No references." in ok(pl("refs", "db.users"))


class TestContext:
    def test_push(self, pl):
        ok(pl("create", "conv.py", "-t", "convention", "--globs", "src/**/*.py", "--content", "Use ruff."))
        ok(pl("create", "conv.auth", "-t", "convention", "--scopes", "auth", "--content", "Hash passwords."))
        out = ok(pl("context", "--for", "src/app/main.py", "--scope", "auth"))
        assert out == "Use ruff.\n" + "\n---\n\n" + "Hash passwords.\n"

    def test_brief_and_missing(self, pl):
        ok(pl("create", "db.users", "-d", "Users"))
        out = ok(pl("context", "db.users", "ghost", "--brief"))
        assert "Warning: pearl not found: ghost" in out
        assert "## db.users" in out
        assert "- **Description:** Users" in out

    def test_json(self, pl):
        ok(pl("create", "db.users"))
        ok(pl("create", "db.orders"))
        ok(pl("update", "db.orders", "--add-ref", "db.users"))
        data = json.loads(ok(pl("context", "db.orders", "--with-refs", "--json")))
        assert [p["id"] for p in data["pearls"]] == ["db.orders", "db.users"]

    def test_requires_a_selector(self, pl):
        assert pl("context").exit_code == 2


class TestClutch:
    def test_required_by_priority(self, pl):
        ok(pl("create", "low", "--required", "--priority", "1"))
        ok(pl("create", "high", "--required", "--priority", "9"))
        ok(pl("create", "optional"))
        data = json.loads(ok(pl("clutch", "--json")))
        assert [p["id"] for p in data["pearls"]] == ["high", "low"]
        assert data["count"] == 2


class TestSearch:
    def test_keyword(self, pl):
        ok(pl("create", "db.users", "-d", "Registered users"))
        ok(pl("create", "db.orders", "-d", "Purchases"))
        out = ok(pl("search", "registered"))
        assert "db.users" in out
        assert "db.orders" not in out
        assert "1 result(s) for 'registered'" in out

    def test_type_filter_and_json(self, pl):
        ok(pl("create", "db.users"))
        ok(pl("create", "api.users", "-t", "api"))
        data = json.loads(ok(pl("search", "users", "-t", "api", "--json")))
        assert [p["id"] for p in data["results"]] == ["api.users"]

    def test_no_results(self, pl):
        assert "No results for 'zzz'" in ok(pl("search", "zzz"))

    def test_semantic_disabled(self, pl):
        result = pl("search", "who bought what", "--semantic")
        assert result.exit_code == 1
        assert "semantic search requires vector search to be enabled" in result.output


# ---------------------------------------------------------------------------
# sync / index / doctor
# ---------------------------------------------------------------------------


class TestSync:
    def test_rebuild_after_db_loss(self, pl, repo):
        ok(pl("create", "db.users"))
        for p in (repo / ".pearls").glob("pearls.db*"):
            p.unlink()
        out = ok(pl("sync"))
        assert "✓ Database rebuilt (1 pearls)" in out
        ok(pl("show", "db.users"))

    def test_to_jsonl(self, pl, repo):
        ok(pl("create", "db.users"))
        (repo / ".pearls" / "pearls.jsonl").write_text("")
        assert "✓ Database exported to JSONL" in ok(pl("sync", "--to-jsonl"))
        assert "db.users" in (repo / ".pearls" / "pearls.jsonl").read_text()

    def test_refresh_hashes(self, pl, repo):
        ok(pl("create", "db.users"))
        (repo / ".pearls" / "content" / "db" / "users.md").write_text("edited")
        assert "✓ Content hashes updated (1 changed)" in ok(pl("sync", "--refresh-hashes"))


class TestIndex:
    def test_status_json(self, pl):
        ok(pl("create", "db.users"))
        data = json.loads(ok(pl("index", "--json")))
        assert data == {
            "vector_search_enabled": False,
            "pearl_count": 1,
            "embedding_count": 0,
            "indexed_percent": 0.0,
        }

    def test_status_text(self, pl):
        out = ok(pl("index"))
        assert "Vector Search Index" in out
        assert "Enabled:     false" in out

    def test_rebuild_disabled(self, pl):
        result = pl("index", "--rebuild")
        assert result.exit_code == 1
        assert "vector search is disabled in config" in result.output


class TestDoctor:
    def test_healthy(self, pl):
        ok(pl("create", "db.users"))
        out = ok(pl("doctor"))
        assert "✓ JSONL/SQLite in sync (1 pearls)" in out
        assert "✗" not in out

    def test_missing_content(self, pl, repo):
        ok(pl("create", "db.users"))
        (repo / ".pearls" / "content" / "db" / "users.md").unlink()
        result = pl("doctor")
        assert result.exit_code == 1
        assert "✗ No missing content files" in result.output
        assert "1 pearls missing content: db.users" in result.output
        assert "some checks failed" in result.output

    def test_json(self, pl):
        data = json.loads(ok(pl("doctor", "--json")))
        assert len(data) == 5
        assert all(c["passed"] for c in data)


# ---------------------------------------------------------------------------
# introspect / onboard / prime
# ---------------------------------------------------------------------------


@pytest.fixture
def app_db(tmp_path_factory):
    path = tmp_path_factory.mktemp("data") / "app.db"
    conn = sqlite3.connect(path)
    conn.executescript(
        "CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT NOT NULL);"
        "CREATE TABLE orders (id INTEGER PRIMARY KEY, user_id INTEGER REFERENCES users(id));"
    )
    conn.close()
    return path


class TestIntrospect:
    def test_dry_run(self, pl, app_db, monkeypatch):
        monkeypatch.setenv("PEARLS_SQLITE_PATH", str(app_db))
        out = ok(pl("introspect", "sqlite", "--prefix", "db.app", "--dry-run"))
        assert "Found 1 schema(s)" in out
        assert "  main: 2 table(s)" in out
        assert "  db.app.main.orders (table)" in out
        assert "No pearls found." in ok(pl("list"))

    def test_create_and_rerun(self, pl, app_db, monkeypatch):
        monkeypatch.setenv("PEARLS_SQLITE_PATH", str(app_db))
        assert "✓ Created 4 pearl(s)" in ok(pl("introspect", "sqlite", "--prefix", "db.app"))
        assert "| email | TEXT | NO |" in ok(pl("cat", "db.app.main.users"))
        assert "(4 skipped)" in ok(pl("introspect", "sqlite", "--prefix", "db.app", "--skip-existing"))
        assert "✓ Created 4 pearl(s)" in ok(pl("introspect", "sqlite", "--prefix", "db.app"))
        assert json.loads(ok(pl("list", "--json")))["count"] == 4
        assert "✓" in ok(pl("doctor"))

    def test_env_file(self, pl, repo, app_db, monkeypatch):
        monkeypatch.delenv("APP_DB", raising=False)
        (repo / ".env").write_text(f"APP_DB={app_db}\n")
        ok(pl("introspect", "sqlite", "--prefix", "db.app", "--env", "APP_DB"))
        data = json.loads(ok(pl("show", "db.app", "--json")))
        assert data["pearl"]["connection"] == {"type": "sqlite", "host": "${APP_DB}"}
        os.environ.pop("APP_DB", None)

    def test_missing_connection_string(self, pl, monkeypatch):
        monkeypatch.delenv("PEARLS_SQLITE_PATH", raising=False)
        result = pl("introspect", "sqlite", "--prefix", "db.app")
        assert result.exit_code == 1
        assert "set PEARLS_SQLITE_PATH in .env or environment" in result.output

    def test_unsupported_type(self, pl):
        result = pl("introspect", "oracle", "--prefix", "db.x")
        assert result.exit_code == 1
        assert "unsupported database type" in result.output

    def test_unknown_schema(self, pl, app_db, monkeypatch):
        monkeypatch.setenv("PEARLS_SQLITE_PATH", str(app_db))
        result = pl("introspect", "sqlite", "--prefix", "db.app", "--schema", "public")
        assert result.exit_code == 1
        assert "schema 'public' not found" in result.output


class TestOnboard:
    def test_writes_and_is_idempotent(self, pl, repo):
        assert "✓ Updated CLAUDE.md" in ok(pl("onboard"))
        assert MARKER_START in (repo / "CLAUDE.md").read_text()
        assert "already has a pearls section" in ok(pl("onboard"))

    def test_all(self, pl, repo):
        ok(pl("onboard", "--target", "all"))
        assert (repo / "agents.md").exists()


class TestPrime:
    def test_summary(self, pl):
        ok(pl("create", "db.users"))
        out = ok(pl("prime"))
        assert out.startswith("# Pearls Context")
        assert "1 pearls: 1 table" in out

    def test_override(self, pl, repo):
        (repo / ".pearls" / "PRIME.md").write_text("Read the runbook first.\n")
        assert ok(pl("prime")) == "Read the runbook first.\n"

    def test_outside_catalog_is_silent(self, runner, tmp_path):
        result = runner.invoke(cli, ["-C", str(tmp_path), "prime"])
        assert result.exit_code == 0
        assert result.output == ""


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "version" in result.output
