"""Markdown content files for pearls.

ContentStore maps (namespace, name) to a path under the content root:

    content/
        db/
            postgres/
                users.md      # pearl db.postgres.users

All paths handed in and out are relative to the content root and use "/".
"""

from __future__ import annotations

import hashlib
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from pearls.errors import NotFoundError
from pearls.models import AssetType

if TYPE_CHECKING:
    from pearls.models import Pearl

CONTENT_SUFFIX = ".md"


def hash_bytes(data: bytes) -> str:
    """SHA-256 hex digest."""
    return hashlib.sha256(data).hexdigest()


def hash_text(text: str) -> str:
    return hash_bytes(text.encode())


class ContentStore:
    """Reads and writes markdown bodies under a single base directory."""

    def __init__(self, base_dir: Path | str) -> None:
        self.base_dir = Path(base_dir)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @staticmethod
    def path_for(namespace: str, name: str) -> str:
        """namespace "db.postgres", name "users" -> "db/postgres/users.md"."""
        parts = namespace.split(".") if namespace else []
        parts.append(name + CONTENT_SUFFIX)
        return str(PurePosixPath(*parts))

    def full_path(self, rel_path: str) -> Path:
        return self.base_dir / rel_path

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def read(self, rel_path: str) -> str:
        try:
            return self.full_path(rel_path).read_text(encoding="utf-8")
        except FileNotFoundError:
            msg = f"content file not found: {rel_path}"
            raise NotFoundError(msg) from None

    def read_bytes(self, rel_path: str) -> bytes | None:
        """Raw bytes, or None if the file is absent."""
        try:
            return self.full_path(rel_path).read_bytes()
        except FileNotFoundError:
            return None

    def exists(self, rel_path: str) -> bool:
        return self.full_path(rel_path).is_file()

    def hash(self, rel_path: str) -> str:
        try:
            data = self.full_path(rel_path).read_bytes()
        except FileNotFoundError:
            msg = f"content file not found: {rel_path}"
            raise NotFoundError(msg) from None
        return hash_bytes(data)

    def list_files(self) -> set[str]:
        """All markdown files under the content root, as relative paths."""
        if not self.base_dir.is_dir():
            return set()
        return {
            p.relative_to(self.base_dir).as_posix()
            for p in self.base_dir.rglob("*" + CONTENT_SUFFIX)
            if p.is_file()
        }

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write(self, rel_path: str, text: str) -> None:
        path = self.full_path(rel_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    def write_bytes(self, rel_path: str, data: bytes) -> None:
        path = self.full_path(rel_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def delete(self, rel_path: str) -> None:
        """Remove a content file. A missing file is not an error."""
        self.full_path(rel_path).unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

_SECTIONS: dict[str, str] = {
    AssetType.TABLE: (
        "## Schema\n\n"
        "| Column | Type | Nullable | Description |\n"
        "|--------|------|----------|-------------|\n"
        "| id | | | |\n\n"
        "## Relationships\n\n"
        "## Access Patterns\n\n"
        "```sql\n-- Example query\n```\n\n"
        "## Notes\n\n"
    ),
    AssetType.API: (
        "## Endpoints\n\n"
        "## Authentication\n\n"
        "## Examples\n\n"
        "```bash\n# Example request\n```\n\n"
        "## Notes\n\n"
    ),
    AssetType.DATABASE: (
        "## Overview\n\n"
        "## Tables\n\n"
        "## Access\n\n"
        "## Notes\n\n"
    ),
}
_SECTIONS[AssetType.ENDPOINT] = _SECTIONS[AssetType.API]
_SECTIONS[AssetType.SCHEMA] = _SECTIONS[AssetType.DATABASE]
_DEFAULT_SECTIONS = "## Overview\n\n## Details\n\n## Notes\n\n"


def template_for(pearl: Pearl) -> str:
    """Starter markdown body for a new pearl, shaped by its type."""
    head = f"# {pearl.name}\n\n"
    if pearl.description:
        head += pearl.description + "\n\n"
    return head + _SECTIONS.get(str(pearl.type), _DEFAULT_SECTIONS)
