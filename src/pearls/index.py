"""SQLite query cache over the pearl log, plus a flat vector index.

The DB is a pure derived cache: delete it and `pearls sync` rebuilds it
from pearls.jsonl. Tables:

    pearls            one row per pearl; list fields stored as JSON arrays
    pearl_embeddings  one float32 vector per pearl row, keyed by row_id
                      (ON DELETE CASCADE), searched with numpy L2 distance

WAL mode plus a busy timeout lets concurrent CLI invocations serialize
instead of failing with "database is locked".
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from pearls.errors import AlreadyExistsError, NotFoundError, ValidationError
from pearls.globs import match_path
from pearls.models import ConnectionInfo, Pearl, _parse_time, utc_now

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from numpy.typing import NDArray

BUSY_TIMEOUT_S = 5.0

_COLUMNS = (
    "id, name, namespace, type, tags, globs, scopes, description, content_path, content_hash, "
    "refs, parent, connection, required, priority, created_at, updated_at, created_by, status"
)
_ORDER = "ORDER BY priority DESC, namespace, name"

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS pearls (
        row_id INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        namespace TEXT NOT NULL DEFAULT '',
        type TEXT NOT NULL,
        tags TEXT NOT NULL DEFAULT '[]',
        globs TEXT NOT NULL DEFAULT '[]',
        scopes TEXT NOT NULL DEFAULT '[]',
        description TEXT NOT NULL DEFAULT '',
        content_path TEXT NOT NULL DEFAULT '',
        content_hash TEXT NOT NULL DEFAULT '',
        refs TEXT NOT NULL DEFAULT '[]',
        parent TEXT NOT NULL DEFAULT '',
        connection TEXT,
        required INTEGER NOT NULL DEFAULT 0,
        priority INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        created_by TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'active'
    );

    CREATE INDEX IF NOT EXISTS idx_pearls_namespace ON pearls(namespace);
    CREATE INDEX IF NOT EXISTS idx_pearls_type ON pearls(type);
    CREATE INDEX IF NOT EXISTS idx_pearls_status ON pearls(status);
    CREATE INDEX IF NOT EXISTS idx_pearls_required ON pearls(required, priority);

    CREATE TABLE IF NOT EXISTS pearl_embeddings (
        pearl_row INTEGER PRIMARY KEY REFERENCES pearls(row_id) ON DELETE CASCADE,
        dim INTEGER NOT NULL,
        vector BLOB NOT NULL,   -- raw float32 bytes
        updated_at TEXT
    );
"""


@dataclass
class ListOptions:
    """Filters for IndexStore.list. Unset fields do not filter."""

    namespace: str = ""     # matches the namespace itself and everything below it
    type: str = ""
    status: str = ""
    tag: str = ""
    scope: str = ""
    required: bool | None = None
    limit: int = 0


def connect(db_path: Path) -> sqlite3.Connection:
    """Open the cache DB with WAL, a busy timeout, and foreign keys enforced."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    # A crashed first open can leave a 0-byte file that sqlite refuses to use.
    if db_path.exists() and db_path.stat().st_size == 0:
        db_path.unlink()
    conn = sqlite3.connect(str(db_path), timeout=BUSY_TIMEOUT_S)
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={int(BUSY_TIMEOUT_S * 1000)}")
        conn.execute("PRAGMA foreign_keys=ON")
    except sqlite3.OperationalError as exc:
        conn.close()
        msg = (
            f"Failed to open DB {db_path}: may be corrupt.\n"
            f"Fix: rm {db_path}* && pearls sync\n"
            f"Original error: {exc}"
        )
        raise sqlite3.OperationalError(msg) from exc
    return conn


def _escape_like(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_pearl(row: Sequence[Any]) -> Pearl:
    (pid, name, namespace, ptype, tags, globs, scopes, description, content_path,
     content_hash, refs, parent, conn_json, required, priority, created_at,
     updated_at, created_by, status) = row
    return Pearl(
        id=pid,
        name=name,
        namespace=namespace,
        type=ptype,
        tags=json.loads(tags or "[]"),
        globs=json.loads(globs or "[]"),
        scopes=json.loads(scopes or "[]"),
        description=description,
        content_path=content_path,
        content_hash=content_hash,
        references=json.loads(refs or "[]"),
        parent=parent,
        connection=ConnectionInfo.from_dict(json.loads(conn_json)) if conn_json else None,
        required=bool(required),
        priority=int(priority),
        created_at=_parse_time(created_at),
        updated_at=_parse_time(updated_at),
        created_by=created_by,
        status=status,
    )


def _pearl_params(p: Pearl) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "namespace": p.namespace,
        "type": str(p.type),
        "tags": json.dumps(list(p.tags), ensure_ascii=False),
        "globs": json.dumps(list(p.globs), ensure_ascii=False),
        "scopes": json.dumps(list(p.scopes), ensure_ascii=False),
        "description": p.description,
        "content_path": p.content_path,
        "content_hash": p.content_hash,
        "refs": json.dumps(list(p.references), ensure_ascii=False),
        "parent": p.parent,
        "connection": json.dumps(p.connection.to_dict(), ensure_ascii=False) if p.connection is not None else None,
        "required": int(p.required),
        "priority": int(p.priority),
        "created_at": p.created_at.isoformat(),
        "updated_at": p.updated_at.isoformat(),
        "created_by": p.created_by,
        "status": str(p.status),
    }


class IndexStore:
    """Rebuildable SQLite cache: CRUD, filtered listing, search, and vectors."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._conn = connect(db_path)
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def _insert(self, p: Pearl) -> None:
        try:
            self._conn.execute(
                f"INSERT INTO pearls ({_COLUMNS}) VALUES ("
                ":id, :name, :namespace, :type, :tags, :globs, :scopes, :description, "
                ":content_path, :content_hash, :refs, :parent, :connection, :required, "
                ":priority, :created_at, :updated_at, :created_by, :status)",
                _pearl_params(p),
            )
        except sqlite3.IntegrityError as exc:
            if "pearls.id" in str(exc):
                msg = f"pearl {p.id!r} already exists"
                raise AlreadyExistsError(msg) from exc
            raise

    def insert(self, p: Pearl) -> None:
        """Add a new pearl. Raises AlreadyExistsError on an ID collision."""
        with self._conn:
            self._insert(p)

    def update(self, p: Pearl) -> None:
        """Overwrite every column of an existing pearl except created_at."""
        params = _pearl_params(p)
        del params["created_at"]
        with self._conn:
            cur = self._conn.execute(
                """UPDATE pearls SET
                       name = :name, namespace = :namespace, type = :type, tags = :tags,
                       globs = :globs, scopes = :scopes, description = :description,
                       content_path = :content_path, content_hash = :content_hash,
                       refs = :refs, parent = :parent, connection = :connection,
                       required = :required, priority = :priority,
                       updated_at = :updated_at, created_by = :created_by, status = :status
                   WHERE id = :id""",
                params,
            )
        if cur.rowcount == 0:
            msg = f"pearl not found: {p.id}"
            raise NotFoundError(msg)

    def delete(self, pearl_id: str) -> None:
        """Remove a pearl and its vector. Raises NotFoundError if absent."""
        with self._conn:
            self._conn.execute(
                "DELETE FROM pearl_embeddings WHERE pearl_row = (SELECT row_id FROM pearls WHERE id = ?)",
                (pearl_id,),
            )
            cur = self._conn.execute("DELETE FROM pearls WHERE id = ?", (pearl_id,))
        if cur.rowcount == 0:
            msg = f"pearl not found: {pearl_id}"
            raise NotFoundError(msg)

    def get(self, pearl_id: str) -> Pearl | None:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM pearls WHERE id = ?", (pearl_id,)
        ).fetchone()
        return _row_to_pearl(row) if row else None

    def clear(self) -> None:
        """Delete every pearl (vectors cascade)."""
        with self._conn:
            self._conn.execute("DELETE FROM pearls")

    def replace_all(self, pearls: Iterable[Pearl]) -> int:
        """Clear and re-insert in one transaction. Nothing changes on failure."""
        n = 0
        with self._conn:
            self._conn.execute("DELETE FROM pearls")
            for p in pearls:
                self._insert(p)
                n += 1
        return n

    def count(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM pearls").fetchone()[0])

    def ids(self) -> set[str]:
        return {r[0] for r in self._conn.execute("SELECT id FROM pearls")}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _select(self, where: str = "1=1", args: Sequence[Any] = (), limit: int = 0) -> list[Pearl]:
        sql = f"SELECT {_COLUMNS} FROM pearls WHERE {where} {_ORDER}"
        if limit > 0:
            sql += " LIMIT ?"
            args = (*args, limit)
        return [_row_to_pearl(r) for r in self._conn.execute(sql, args)]

    def list(self, opts: ListOptions | None = None) -> list[Pearl]:
        """Pearls matching opts, by priority desc then namespace, name."""
        opts = opts or ListOptions()
        clauses = ["1=1"]
        args: list[Any] = []
        if opts.namespace:
            clauses.append("(namespace = ? OR substr(namespace, 1, ?) = ?)")
            args += [opts.namespace, len(opts.namespace) + 1, opts.namespace + "."]
        if opts.type:
            clauses.append("type = ?")
            args.append(opts.type)
        if opts.status:
            clauses.append("status = ?")
            args.append(str(opts.status))
        if opts.tag:
            clauses.append("EXISTS (SELECT 1 FROM json_each(pearls.tags) WHERE value = ?)")
            args.append(opts.tag)
        if opts.scope:
            clauses.append("EXISTS (SELECT 1 FROM json_each(pearls.scopes) WHERE value = ?)")
            args.append(opts.scope)
        if opts.required is not None:
            clauses.append("required = ?")
            args.append(int(opts.required))
        return self._select(" AND ".join(clauses), args, opts.limit)

    def all(self) -> list[Pearl]:
        return self.list()

    def search(self, query: str, limit: int = 50) -> list[Pearl]:
        """Case-insensitive substring match on id, name, namespace, description, tags."""
        if limit <= 0:
            limit = 50
        pattern = f"%{_escape_like(query)}%"
        fields = ("id", "name", "namespace", "description")
        clauses = [f"{f} LIKE ? ESCAPE '\\'" for f in fields]
        clauses.append("EXISTS (SELECT 1 FROM json_each(pearls.tags) WHERE value LIKE ? ESCAPE '\\')")
        return self._select(f"({' OR '.join(clauses)})", [pattern] * len(clauses), limit)

    def find_by_glob(self, path: str) -> list[Pearl]:
        """Pearls with at least one glob pattern matching path."""
        candidates = self._select("globs != '[]'")
        return [p for p in candidates if match_path(path, p.globs)]

    def find_by_scope(self, scope: str) -> list[Pearl]:
        return self.list(ListOptions(scope=scope))

    def find_referencing(self, pearl_id: str) -> list[Pearl]:
        """Pearls whose references list contains pearl_id (incoming edges)."""
        return self._select(
            "EXISTS (SELECT 1 FROM json_each(pearls.refs) WHERE value = ?)", [pearl_id]
        )

    # ------------------------------------------------------------------
    # Vectors
    # ------------------------------------------------------------------

    def _row_id(self, pearl_id: str) -> int:
        row = self._conn.execute("SELECT row_id FROM pearls WHERE id = ?", (pearl_id,)).fetchone()
        if row is None:
            msg = f"pearl not found: {pearl_id}"
            raise NotFoundError(msg)
        return int(row[0])

    def _check_dim(self, dim: int) -> None:
        row = self._conn.execute("SELECT dim FROM pearl_embeddings LIMIT 1").fetchone()
        if row is not None and int(row[0]) != dim:
            msg = f"embedding dimension {dim} does not match index dimension {row[0]}"
            raise ValidationError(msg)

    def _insert_vector(self, row_id: int, vector: NDArray[np.float32]) -> None:
        vec = np.asarray(vector, dtype=np.float32).reshape(-1)
        self._check_dim(vec.shape[0])
        try:
            self._conn.execute(
                "INSERT INTO pearl_embeddings(pearl_row, dim, vector, updated_at) VALUES (?, ?, ?, ?)",
                (row_id, vec.shape[0], vec.tobytes(), utc_now().isoformat()),
            )
        except sqlite3.IntegrityError as exc:
            msg = "embedding already exists; use replace_vector"
            raise AlreadyExistsError(msg) from exc

    def insert_vector(self, pearl_id: str, vector: NDArray[np.float32]) -> None:
        with self._conn:
            self._insert_vector(self._row_id(pearl_id), vector)

    def replace_vector(self, pearl_id: str, vector: NDArray[np.float32]) -> None:
        """Delete-then-insert; there is no in-place vector update."""
        with self._conn:
            row_id = self._row_id(pearl_id)
            self._conn.execute("DELETE FROM pearl_embeddings WHERE pearl_row = ?", (row_id,))
            self._insert_vector(row_id, vector)

    def delete_vector(self, pearl_id: str) -> None:
        with self._conn:
            self._conn.execute(
                "DELETE FROM pearl_embeddings WHERE pearl_row = (SELECT row_id FROM pearls WHERE id = ?)",
                (pearl_id,),
            )

    def clear_vectors(self) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM pearl_embeddings")

    def has_vector(self, pearl_id: str) -> bool:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM pearl_embeddings e JOIN pearls p ON p.row_id = e.pearl_row WHERE p.id = ?",
            (pearl_id,),
        ).fetchone()
        return bool(row[0])

    def vector_count(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM pearl_embeddings").fetchone()[0])

    def search_nearest(self, query: NDArray[np.float32], k: int = 10) -> list[tuple[str, float]]:
        """Top-k (pearl_id, L2 distance), closest first. 0.0 means identical."""
        if k <= 0:
            k = 10
        q = np.asarray(query, dtype=np.float32).reshape(-1)
        rows = self._conn.execute(
            "SELECT p.id, e.vector FROM pearl_embeddings e JOIN pearls p ON p.row_id = e.pearl_row "
            "WHERE e.dim = ?",
            (q.shape[0],),
        ).fetchall()
        if not rows:
            return []
        ids = [r[0] for r in rows]
        matrix = np.vstack([np.frombuffer(r[1], dtype=np.float32) for r in rows])
        distances = np.linalg.norm(matrix - q, axis=1)
        top_k = min(k, len(ids))
        order = np.argsort(distances, kind="stable")[:top_k]
        return [(ids[int(i)], float(distances[int(i)])) for i in order]
