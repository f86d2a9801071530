"""SQLite introspection via PRAGMA table_info / foreign_key_list / index_list."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from pearls.errors import NotFoundError, StorageError
from pearls.introspect import Column, ForeignKey, Index, Table


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SQLiteIntrospector:
    """Reads one SQLite file, opened read-only. The only schema is "main"."""

    def __init__(self) -> None:
        self._conn: sqlite3.Connection | None = None

    def connect(self, dsn: str) -> None:
        path = dsn.removeprefix("sqlite://").removeprefix("file:")
        path = path.split("?", 1)[0]
        if not Path(path).is_file():
            msg = f"sqlite database not found: {path}"
            raise NotFoundError(msg)
        try:
            self._conn = sqlite3.connect(f"file:{path}?mode=ro", uri=True)
            self._conn.execute("SELECT 1")
        except sqlite3.Error as exc:
            msg = f"sqlite open {path}: {exc}"
            raise StorageError(msg) from exc

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            msg = "introspector is not connected"
            raise StorageError(msg)
        return self._conn

    def schemas(self) -> list[str]:
        return ["main"]

    def tables(self, schema: str) -> list[Table]:
        try:
            names = [
                r[0] for r in self.conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table' "
                    "AND name NOT LIKE 'sqlite_%' ORDER BY name"
                )
            ]
            return [
                Table(
                    name=name,
                    schema=schema,
                    columns=self._columns(name),
                    foreign_keys=self._foreign_keys(name),
                    indexes=self._indexes(name),
                )
                for name in names
            ]
        except sqlite3.Error as exc:
            msg = f"sqlite tables: {exc}"
            raise StorageError(msg) from exc

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _columns(self, table: str) -> list[Column]:
        # cid, name, type, notnull, dflt_value, pk
        return [
            Column(
                name=name,
                data_type=dtype,
                nullable=not notnull,
                default="" if dflt is None else str(dflt),
                primary_key=pk > 0,
            )
            for _cid, name, dtype, notnull, dflt, pk in self.conn.execute(f"PRAGMA table_info({_quote(table)})")
        ]

    def _foreign_keys(self, table: str) -> list[ForeignKey]:
        # id, seq, table, from, to, on_update, on_delete, match
        return [
            ForeignKey(column=row[3], references_table=row[2], references_column=row[4] or "")
            for row in self.conn.execute(f"PRAGMA foreign_key_list({_quote(table)})")
        ]

    def _indexes(self, table: str) -> list[Index]:
        # seq, name, unique, origin, partial
        out = []
        for row in self.conn.execute(f"PRAGMA index_list({_quote(table)})").fetchall():
            name, unique = row[1], row[2]
            cols = [r[2] or "" for r in self.conn.execute(f"PRAGMA index_info({_quote(name)})")]
            out.append(Index(name=name, columns=cols, unique=bool(unique)))
        return out
