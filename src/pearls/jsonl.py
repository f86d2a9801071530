"""pearls.jsonl: the git-tracked source of truth.

One full pearl snapshot per line, UTF-8 JSON. New pearls are appended;
updates and deletes rewrite the whole file through a temp file + fsync +
rename, so a reader never sees a half-written log.
"""

from __future__ import annotations

import contextlib
import json
import os
from pathlib import Path
from typing import TYPE_CHECKING

from pearls.errors import LogParseError
from pearls.models import Pearl

if TYPE_CHECKING:
    from collections.abc import Iterable


def _dumps(pearl: Pearl) -> str:
    return json.dumps(pearl.to_dict(), ensure_ascii=False) + "\n"


class LogStore:
    """Line-delimited pearl log."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def read_all(self) -> list[Pearl]:
        """Every pearl in file order. A missing file is an empty log."""
        if not self.path.exists():
            return []
        pearls: list[Pearl] = []
        with self.path.open("rb") as f:
            for lineno, raw in enumerate(f, start=1):
                try:
                    line = raw.decode("utf-8").strip()
                    if not line:
                        continue
                    obj = json.loads(line)
                    pearls.append(Pearl.from_dict(obj))
                except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                    msg = f"{self.path}: parse line {lineno}: {exc}"
                    raise LogParseError(msg, line=lineno) from exc
        return pearls

    def write_all(self, pearls: Iterable[Pearl]) -> None:
        """Atomically replace the log with exactly these pearls."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                for p in pearls:
                    f.write(_dumps(p))
                f.flush()
                os.fsync(f.fileno())
            tmp.replace(self.path)
        except BaseException:
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise

    def append(self, pearl: Pearl) -> None:
        """Append one new pearl. Only valid for IDs not already in the log."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(_dumps(pearl))
