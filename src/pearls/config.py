"""PearlsConfig: per-repo catalog config and on-disk layout.

Layout (relative to the repo root):

    .env                  # optional: PEARLS_POSTGRES_URL, PEARLS_SQLITE_PATH, ... (gitignored)
    .pearls/
        config.toml       # project config (git-tracked)
        pearls.jsonl      # source of truth (git-tracked)
        pearls.db         # SQLite derived cache (gitignored)
        pearls.lock       # advisory write lock (gitignored)
        content/          # markdown bodies (git-tracked)
        PRIME.md          # optional override for `pearls prime`
        .gitignore        # auto-written

config.toml example:

    [project]
    name = "my-project"
    description = ""

    [storage]
    content_dir = "content"

    [defaults]
    status = "active"
    created_by = ""          # empty = current OS user

    [vector_search]
    enabled = false
    model = "sentence-transformers/all-MiniLM-L6-v2"   # or "gemini:gemini-embedding-001"
    cache_dir = ""           # empty = ~/.cache/pearls/embeddings
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pearls.errors import AlreadyExistsError, ConfigError, NotFoundError, ValidationError
from pearls.index import IndexStore
from pearls.models import Status

PEARLS_DIR = ".pearls"
CONFIG_FILENAME = "config.toml"
LOG_FILENAME = "pearls.jsonl"
DB_FILENAME = "pearls.db"
LOCK_FILENAME = "pearls.lock"
PRIME_FILENAME = "PRIME.md"
DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

_GITIGNORE_CONTENT = """\
# SQLite cache, rebuilt from pearls.jsonl
pearls.db
pearls.db-shm
pearls.db-wal
pearls.lock
"""


@dataclass
class Paths:
    """Resolved locations of every catalog file under one repo root."""

    root: Path
    content_subdir: str = "content"

    @property
    def pearls_dir(self) -> Path:
        return self.root / PEARLS_DIR

    @property
    def config_path(self) -> Path:
        return self.pearls_dir / CONFIG_FILENAME

    @property
    def log_path(self) -> Path:
        return self.pearls_dir / LOG_FILENAME

    @property
    def db_path(self) -> Path:
        return self.pearls_dir / DB_FILENAME

    @property
    def lock_path(self) -> Path:
        return self.pearls_dir / LOCK_FILENAME

    @property
    def content_dir(self) -> Path:
        return self.pearls_dir / self.content_subdir

    @property
    def prime_path(self) -> Path:
        return self.pearls_dir / PRIME_FILENAME


@dataclass
class ProjectConfig:
    name: str = ""
    description: str = ""


@dataclass
class StorageConfig:
    content_dir: str = "content"


@dataclass
class DefaultsConfig:
    status: str = Status.ACTIVE
    created_by: str = ""   # empty = current OS user


@dataclass
class VectorSearchConfig:
    enabled: bool = False
    model: str = DEFAULT_MODEL
    cache_dir: str = ""

    @property
    def resolved_cache_dir(self) -> Path:
        if self.cache_dir:
            return Path(self.cache_dir).expanduser()
        return Path.home() / ".cache" / "pearls" / "embeddings"


@dataclass
class PearlsConfig:
    """Parsed .pearls/config.toml."""

    project: ProjectConfig = field(default_factory=ProjectConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    vector_search: VectorSearchConfig = field(default_factory=VectorSearchConfig)

    def paths(self, root: Path) -> Paths:
        return Paths(root=root, content_subdir=self.storage.content_dir)


# ---------------------------------------------------------------------------
# Discovery / loading
# ---------------------------------------------------------------------------


def find_root(start: Path | str | None = None) -> Path:
    """Walk upward from start looking for a .pearls/ directory."""
    start_path = Path(start).resolve() if start else Path.cwd()
    for directory in (start_path, *start_path.parents):
        if (directory / PEARLS_DIR).is_dir():
            return directory
    msg = f"no {PEARLS_DIR}/ directory found in {start_path} or any parent (run `pearls init`)"
    raise NotFoundError(msg)


def _flag(section: dict[str, Any], key: str, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        msg = f"{key} must be true or false, got {value!r}"
        raise ValidationError(msg)
    return value


def load_config(path: Path) -> PearlsConfig:
    """Parse config.toml. Raises ConfigError if it is missing or malformed."""
    try:
        with path.open("rb") as f:
            raw: dict[str, Any] = tomllib.load(f)
    except FileNotFoundError:
        msg = f"config not found: {path}"
        raise ConfigError(msg) from None
    except (OSError, tomllib.TOMLDecodeError) as exc:
        msg = f"invalid config {path}: {exc}"
        raise ConfigError(msg) from exc

    proj = raw.get("project", {})
    stor = raw.get("storage", {})
    dflt = raw.get("defaults", {})
    vec = raw.get("vector_search", {})
    try:
        cfg = PearlsConfig(
            project=ProjectConfig(
                name=str(proj.get("name", "")),
                description=str(proj.get("description", "")),
            ),
            storage=StorageConfig(
                content_dir=str(stor.get("content_dir", "content")) or "content",
            ),
            defaults=DefaultsConfig(
                status=str(Status.parse(str(dflt.get("status", Status.ACTIVE)))),
                created_by=str(dflt.get("created_by", "")),
            ),
            vector_search=VectorSearchConfig(
                enabled=_flag(vec, "enabled", False),
                model=str(vec.get("model", DEFAULT_MODEL)) or DEFAULT_MODEL,
                cache_dir=str(vec.get("cache_dir", "")),
            ),
        )
    except (AttributeError, ValidationError) as exc:
        msg = f"invalid config {path}: {exc}"
        raise ConfigError(msg) from exc
    return cfg


def _toml_str(s: str) -> str:
    return '"' + s.replace("\\", "\\\\").replace('"', '\\"') + '"'


def write_config(path: Path, cfg: PearlsConfig) -> None:
    vs = cfg.vector_search
    content = f"""\
[project]
name = {_toml_str(cfg.project.name)}
description = {_toml_str(cfg.project.description)}

[storage]
content_dir = {_toml_str(cfg.storage.content_dir)}   # relative to .pearls/

[defaults]
status = {_toml_str(cfg.defaults.status)}
created_by = {_toml_str(cfg.defaults.created_by)}   # empty = current OS user

[vector_search]
enabled = {"true" if vs.enabled else "false"}
model = {_toml_str(vs.model)}   # "gemini:<model>" for Gemini, otherwise a fastembed model
# cache_dir = "~/.cache/pearls/embeddings"
"""
    path.write_text(content)


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


def init_catalog(root: Path, name: str | None = None) -> Paths:
    """Create .pearls/ with config, empty log, DB schema, content dir, and .gitignore."""
    paths = Paths(root=root)
    if paths.pearls_dir.exists():
        msg = f"already initialized in {paths.pearls_dir}"
        raise AlreadyExistsError(msg)
    paths.content_dir.mkdir(parents=True)
    cfg = PearlsConfig(project=ProjectConfig(name=name or root.name))
    write_config(paths.config_path, cfg)
    paths.log_path.write_text("")
    (paths.pearls_dir / ".gitignore").write_text(_GITIGNORE_CONTENT)
    IndexStore(paths.db_path).close()
    ensure_gitignore_entry(root / ".gitignore", ".env")
    return paths


def ensure_gitignore_entry(path: Path, entry: str) -> bool:
    """Append entry to a .gitignore unless already present. Returns True if written."""
    text = path.read_text() if path.exists() else ""
    if any(line.strip() == entry for line in text.splitlines()):
        return False
    if text and not text.endswith("\n"):
        text += "\n"
    path.write_text(text + entry + "\n")
    return True


# ---------------------------------------------------------------------------
# .env
# ---------------------------------------------------------------------------


def load_env(root: Path) -> dict[str, str]:
    """Parse a simple KEY=VALUE .env file (no external dependency)."""
    env_file = root / ".env"
    if not env_file.exists():
        return {}
    env: dict[str, str] = {}
    for line in env_file.read_text().splitlines():
        line = line.strip()
        if line.startswith("export "):
            line = line[len("export "):]
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            env[k.strip()] = v.strip().strip('"').strip("'")
    return env


def apply_env(root: Path) -> None:
    """Load .env into os.environ without overriding variables already set."""
    for key, value in load_env(root).items():
        os.environ.setdefault(key, value)
