"""Database introspection: read live schemas and turn them into pearls.

Drivers implement the Introspector protocol and hand back plain Table
structures; `generate_pearls` does the rest. Only SQLite ships here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from pearls.errors import ValidationError

DEFAULT_ENV_VARS = {
    "postgres": "PEARLS_POSTGRES_URL",
    "mysql": "PEARLS_MYSQL_URL",
    "sqlite": "PEARLS_SQLITE_PATH",
}


@dataclass
class Column:
    name: str
    data_type: str = ""
    nullable: bool = True
    default: str = ""
    primary_key: bool = False
    constraints: str = ""


@dataclass
class ForeignKey:
    column: str
    references_table: str
    references_column: str = ""
    references_schema: str = ""   # empty = same schema as the table


@dataclass
class Index:
    name: str
    columns: list[str] = field(default_factory=list)
    unique: bool = False


@dataclass
class Table:
    name: str
    schema: str = ""
    columns: list[Column] = field(default_factory=list)
    foreign_keys: list[ForeignKey] = field(default_factory=list)
    indexes: list[Index] = field(default_factory=list)


class Introspector(Protocol):
    def connect(self, dsn: str) -> None: ...

    def schemas(self) -> list[str]: ...

    def tables(self, schema: str) -> list[Table]: ...

    def close(self) -> None: ...


def default_env_var(db_type: str) -> str:
    """Env var holding the connection string for db_type ("" if unknown)."""
    return DEFAULT_ENV_VARS.get(db_type.lower(), "")


def get_introspector(db_type: str) -> Introspector:
    if db_type.lower() == "sqlite":
        from pearls.introspect.sqlite import SQLiteIntrospector
        return SQLiteIntrospector()
    msg = f"unsupported database type {db_type!r}: only sqlite is available"
    raise ValidationError(msg)
