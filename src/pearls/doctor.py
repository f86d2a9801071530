"""Read-only drift checks across the log, the index, and the content tree.

Nothing here repairs anything: `pearls sync`, `pearls sync --to-jsonl`, and
`pearls sync --refresh-hashes` are the fixes.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

from pearls.config import load_config
from pearls.errors import ConsistencyError, PearlsError

if TYPE_CHECKING:
    from pathlib import Path

    from pearls.store import Store


@dataclass
class CheckResult:
    name: str
    passed: bool
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        if not self.issues:
            del d["issues"]
        return d


def check_log_sync(store: Store) -> CheckResult:
    """Same pearl count in log and index, and every indexed ID present in the log."""
    name = "JSONL/SQLite in sync"
    try:
        log_pearls = store.log.read_all()
        db_count = store.count()
        db_ids = [p.id for p in store.all()]
    except PearlsError as exc:
        return CheckResult(name, False, [str(exc)])

    if len(log_pearls) != db_count:
        return CheckResult(name, False, [f"count mismatch: JSONL={len(log_pearls)}, SQLite={db_count}"])

    log_ids = {p.id for p in log_pearls}
    missing = sorted(i for i in db_ids if i not in log_ids)
    if missing:
        return CheckResult(name, False, [f"in SQLite but not JSONL: {', '.join(missing)}"])
    return CheckResult(f"{name} ({db_count} pearls)", True)


def check_orphaned_content(store: Store) -> CheckResult:
    name = "No orphaned content files"
    try:
        files = store.content.list_files()
        referenced = {p.content_path for p in store.all() if p.content_path}
    except (PearlsError, OSError) as exc:
        return CheckResult(name, False, [str(exc)])
    orphans = sorted(files - referenced)
    return CheckResult(name, not orphans, orphans)


def check_missing_content(store: Store) -> CheckResult:
    name = "No missing content files"
    try:
        missing = [
            p.id for p in store.all()
            if p.content_path and not store.content.exists(p.content_path)
        ]
    except PearlsError as exc:
        return CheckResult(name, False, [str(exc)])
    if missing:
        return CheckResult(name, False, [f"{len(missing)} pearls missing content: {', '.join(missing)}"])
    return CheckResult(name, True)


def check_references(store: Store) -> CheckResult:
    name = "All references valid"
    try:
        pearls = store.all()
    except PearlsError as exc:
        return CheckResult(name, False, [str(exc)])
    ids = {p.id for p in pearls}
    broken = [f"{p.id} -> {ref}" for p in pearls for ref in p.references if ref not in ids]
    return CheckResult(name, not broken, broken)


def check_config(config_path: Path) -> CheckResult:
    name = "Config valid"
    try:
        load_config(config_path)
    except PearlsError as exc:
        return CheckResult(name, False, [str(exc)])
    return CheckResult(name, True)


def run_checks(store: Store, config_path: Path) -> list[CheckResult]:
    """All five checks, in report order."""
    return [
        check_log_sync(store),
        check_orphaned_content(store),
        check_missing_content(store),
        check_references(store),
        check_config(config_path),
    ]


def ensure_passed(checks: list[CheckResult]) -> None:
    failed = [c.name for c in checks if not c.passed]
    if failed:
        msg = f"some checks failed: {', '.join(failed)}"
        raise ConsistencyError(msg)
