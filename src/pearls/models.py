"""Data model for the pearls catalog: Pearl records and ID/namespace helpers."""

from __future__ import annotations

import getpass
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pearls.errors import ValidationError
from pearls.globs import validate_globs

# Segments start with a letter; hyphens for hand-written IDs, underscores for
# introspected table names.
_SEGMENT_RE = re.compile(r"^[a-z][a-z0-9_-]*$")
_TYPE_RE = re.compile(r"^[a-z][a-z0-9-]*$")
_SCOPE_RE = re.compile(r"^[a-z][a-z0-9-]*$")


def utc_now() -> datetime:
    return datetime.now(UTC)


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return datetime.fromtimestamp(0, UTC)
    dt = datetime.fromisoformat(str(value))
    return dt if dt.tzinfo else dt.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Namespaces
# ---------------------------------------------------------------------------


def parse_namespace(ns: str) -> list[str]:
    """Split a dotted ID into segments: "db.postgres.users" -> ["db", "postgres", "users"]."""
    if not ns:
        msg = "namespace cannot be empty"
        raise ValidationError(msg)
    segments = ns.split(".")
    for seg in segments:
        if not _SEGMENT_RE.match(seg):
            msg = f"invalid ID {ns!r}: segment {seg!r} must be lowercase alphanumeric, '-' or '_', starting with a letter"
            raise ValidationError(msg)
    return segments


def validate_id(pearl_id: str) -> None:
    parse_namespace(pearl_id)


def parent_namespace(ns: str) -> str:
    """"db.postgres.users" -> "db.postgres"; "" for top-level or invalid IDs."""
    try:
        segments = parse_namespace(ns)
    except ValidationError:
        return ""
    return ".".join(segments[:-1])


def last_segment(ns: str) -> str:
    try:
        return parse_namespace(ns)[-1]
    except ValidationError:
        return ""


def namespace_depth(ns: str) -> int:
    try:
        return len(parse_namespace(ns))
    except ValidationError:
        return 0


def is_child_of(child: str, parent: str) -> bool:
    """True if child is a direct or indirect child of parent ("" is everyone's parent)."""
    if not parent:
        return True
    return child.startswith(parent + ".")


def split_id(pearl_id: str) -> tuple[str, str]:
    """Return (namespace, name) for an ID."""
    segments = parse_namespace(pearl_id)
    return ".".join(segments[:-1]), segments[-1]


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class Status(StrEnum):
    ACTIVE = "active"
    DEPRECATED = "deprecated"
    ARCHIVED = "archived"

    @classmethod
    def parse(cls, value: str) -> Status:
        try:
            return cls(value)
        except ValueError:
            msg = f"invalid status {value!r}: must be active, deprecated, or archived"
            raise ValidationError(msg) from None


class AssetType(str):
    """Free-form pearl type: lowercase alphanumeric + hyphens, starting with a letter.

    The set is open; the constants below are only the common ones.
    """

    TABLE = "table"
    SCHEMA = "schema"
    DATABASE = "database"
    API = "api"
    ENDPOINT = "endpoint"
    FILE = "file"
    BUCKET = "bucket"
    PIPELINE = "pipeline"
    DASHBOARD = "dashboard"
    QUERY = "query"
    CUSTOM = "custom"

    def __new__(cls, value: str) -> AssetType:
        if not _TYPE_RE.match(value or ""):
            msg = f"invalid type {value!r}: must be lowercase alphanumeric + hyphens, starting with a letter"
            raise ValidationError(msg)
        return super().__new__(cls, value)

    @staticmethod
    def is_valid(value: str) -> bool:
        return bool(_TYPE_RE.match(value or ""))

    @classmethod
    def validate(cls, value: str) -> str:
        return str(cls(value))


def validate_scopes(scopes: list[str]) -> None:
    for s in scopes:
        if not _SCOPE_RE.match(s):
            msg = f"invalid scope {s!r}: must be lowercase alphanumeric + hyphens, starting with a letter"
            raise ValidationError(msg)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class ConnectionInfo:
    """Connection details for database/API pearls. Passed through untouched."""

    type: str = ""
    host: str = ""        # may be an env reference: ${DB_HOST}
    port: int = 0
    database: str = ""
    schema: str = ""
    extras: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ConnectionInfo:
        return cls(
            type=d.get("type", ""),
            host=d.get("host", ""),
            port=int(d.get("port", 0) or 0),
            database=d.get("database", ""),
            schema=d.get("schema", ""),
            extras=dict(d.get("extras") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type}
        if self.host:
            d["host"] = self.host
        if self.port:
            d["port"] = self.port
        if self.database:
            d["database"] = self.database
        if self.schema:
            d["schema"] = self.schema
        if self.extras:
            d["extras"] = dict(self.extras)
        return d

    def summary(self) -> str:
        """"postgres @ host/db" style one-liner."""
        s = self.type
        if self.host:
            s += f" @ {self.host}"
        if self.database:
            s += f"/{self.database}"
        return s


@dataclass
class Pearl:
    """A documented asset: metadata plus an optional markdown body on disk."""

    id: str
    name: str
    namespace: str = ""
    type: str = AssetType.CUSTOM
    tags: list[str] = field(default_factory=list)
    globs: list[str] = field(default_factory=list)
    scopes: list[str] = field(default_factory=list)
    description: str = ""
    content_path: str = ""
    content_hash: str = ""
    references: list[str] = field(default_factory=list)
    parent: str = ""
    connection: ConnectionInfo | None = None
    required: bool = False
    priority: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    created_by: str = ""
    status: str = Status.ACTIVE

    @classmethod
    def new(
        cls,
        pearl_id: str,
        pearl_type: str = AssetType.CUSTOM,
        *,
        created_by: str | None = None,
        **fields: Any,
    ) -> Pearl:
        """Build a fresh active pearl, deriving name/namespace from the ID."""
        namespace, name = split_id(pearl_id)
        now = utc_now()
        return cls(
            id=pearl_id,
            name=name,
            namespace=namespace,
            type=str(AssetType(pearl_type)),
            created_at=now,
            updated_at=now,
            created_by=created_by if created_by is not None else default_user(),
            **fields,
        )

    @property
    def full_id(self) -> str:
        return f"{self.namespace}.{self.name}" if self.namespace else self.name

    def validate(self) -> None:
        """Raise ValidationError if any field breaks the catalog's write-time rules."""
        validate_id(self.id)
        if self.full_id != self.id:
            msg = f"pearl {self.id!r}: namespace {self.namespace!r} + name {self.name!r} does not form the ID"
            raise ValidationError(msg)
        AssetType(self.type)
        Status.parse(self.status)
        validate_globs(self.globs)
        validate_scopes(self.scopes)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Pearl:
        conn = d.get("connection")
        return cls(
            id=d["id"],
            name=d.get("name", ""),
            namespace=d.get("namespace", ""),
            type=d.get("type", AssetType.CUSTOM),
            tags=list(d.get("tags") or []),
            globs=list(d.get("globs") or []),
            scopes=list(d.get("scopes") or []),
            description=d.get("description", ""),
            content_path=d.get("content_path", ""),
            content_hash=d.get("content_hash", ""),
            references=list(d.get("references") or []),
            parent=d.get("parent", ""),
            connection=ConnectionInfo.from_dict(conn) if conn else None,
            required=bool(d.get("required", False)),
            priority=int(d.get("priority", 0) or 0),
            created_at=_parse_time(d.get("created_at")),
            updated_at=_parse_time(d.get("updated_at")),
            created_by=d.get("created_by", ""),
            status=d.get("status") or Status.ACTIVE,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "namespace": self.namespace,
            "type": str(self.type),
            "tags": list(self.tags),
        }
        if self.globs:
            d["globs"] = list(self.globs)
        if self.scopes:
            d["scopes"] = list(self.scopes)
        d["description"] = self.description
        d["content_path"] = self.content_path
        d["content_hash"] = self.content_hash
        if self.references:
            d["references"] = list(self.references)
        if self.parent:
            d["parent"] = self.parent
        if self.connection is not None:
            d["connection"] = self.connection.to_dict()
        if self.required:
            d["required"] = True
        if self.priority:
            d["priority"] = self.priority
        d["created_at"] = self.created_at.isoformat()
        d["updated_at"] = self.updated_at.isoformat()
        d["created_by"] = self.created_by
        d["status"] = str(self.status)
        return d


def default_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"
