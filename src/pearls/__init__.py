"""Pearls: a knowledge catalog for AI agents, stored next to the code it describes.

Layout:
    .pearls/
        config.toml       # project settings (git-tracked)
        pearls.jsonl      # one pearl per line; the source of truth (git-tracked)
        content/
            <ns>/<name>.md  # markdown bodies (git-tracked)
        pearls.db         # SQLite: metadata index + vectors (fully reconstructable)
        pearls.lock       # advisory flock for writers
        PRIME.md          # optional override for `pearls prime`

pearls.jsonl line:
    {"id":"db.postgres.users", "name":"users", "namespace":"db.postgres",
     "type":"table", "tags":[...], "content_path":"db/postgres/users.md",
     "content_hash":"<sha256>", "created_at":..., "status":"active", ...}

Writes go content -> index -> log under one Store; `pearls sync` rebuilds
pearls.db from pearls.jsonl whenever they drift.
"""

from importlib.metadata import PackageNotFoundError, version

from pearls.config import PearlsConfig, find_root, init_catalog, load_config
from pearls.models import ConnectionInfo, Pearl, Status
from pearls.store import Store

try:
    __version__ = version("pearls")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "ConnectionInfo",
    "Pearl",
    "PearlsConfig",
    "Status",
    "Store",
    "__version__",
    "find_root",
    "init_catalog",
    "load_config",
]
