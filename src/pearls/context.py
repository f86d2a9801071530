"""Assemble pearls into markdown context for agent prompts.

Two ways in:

    pull  explicit IDs (`pearls context a.b c.d`)
    push  file paths matched against pearl globs (`--for`) and topical
          scopes (`--scope`)

Results are deduplicated by ID, first occurrence wins, so an explicitly
requested pearl keeps its place even if a glob also matches it.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pearls.errors import NotFoundError, StorageError
from pearls.models import Status

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from pearls.models import Pearl
    from pearls.store import Store

logger = logging.getLogger("pearls.context")

SEPARATOR = "\n---\n\n"
SMALL_CATALOG = 20


@dataclass
class Collected:
    pearls: list[Pearl] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


def collect(
    store: Store,
    ids: Iterable[str] = (),
    paths: Iterable[str] = (),
    scopes: Iterable[str] = (),
    with_refs: bool = False,
) -> Collected:
    """Gather pearls for ids, then path globs, then scopes, then (optionally) references."""
    out = Collected()
    seen: set[str] = set()

    def add(p: Pearl) -> None:
        if p.id not in seen:
            seen.add(p.id)
            out.pearls.append(p)

    for pearl_id in ids:
        if pearl_id in seen:
            continue
        p = store.get(pearl_id)
        if p is None:
            out.missing.append(pearl_id)
            continue
        add(p)

    # Push retrieval never surfaces archived pearls.
    for path in paths:
        for p in store.find_by_glob(path):
            if p.status != Status.ARCHIVED:
                add(p)
    for scope in scopes:
        for p in store.find_by_scope(scope):
            if p.status != Status.ARCHIVED:
                add(p)

    if with_refs:
        for p in list(out.pearls):
            for ref in p.references:
                if ref in seen:
                    continue
                target = store.get(ref)
                if target is None:
                    logger.debug("reference %s -> %s not found", p.id, ref)
                    continue
                add(target)
    return out


def render_brief(p: Pearl) -> str:
    lines = [f"## {p.id}", "", f"- **Type:** {p.type}", f"- **Status:** {p.status}"]
    if p.description:
        lines.append(f"- **Description:** {p.description}")
    if p.tags:
        lines.append(f"- **Tags:** {', '.join(p.tags)}")
    if p.connection is not None:
        lines.append(f"- **Connection:** {p.connection.summary()}")
    return "\n".join(lines) + "\n\n"


def render_full(store: Store, p: Pearl) -> str:
    try:
        body = store.get_content(p)
    except (NotFoundError, StorageError) as exc:
        logger.warning("could not read content for %s: %s", p.id, exc)
        return f"## {p.id}\n\n{p.description}\n\n"
    return body if body.endswith("\n") else body + "\n"


def render(store: Store, pearls: Iterable[Pearl], brief: bool = False) -> str:
    """Concatenate pearls as markdown, separated by horizontal rules."""
    parts = [render_brief(p) if brief else render_full(store, p) for p in pearls]
    return SEPARATOR.join(parts)


# ---------------------------------------------------------------------------
# prime
# ---------------------------------------------------------------------------

_TRIGGERS = """\
## When to save a pearl

- You learned a table's columns, joins, or gotchas
- You found how an API authenticates or paginates
- A design discussion settled on a decision worth keeping
- You documented a convention that applies to a directory (attach `--globs`)
"""

_REFERENCE = """\
## Commands

- `pl context --for <path>` / `pl context --scope <scope>`: push context
- `pl search "<query>"` (add `--semantic` for natural language)
- `pl context <id...> [--with-refs]`: specific pearls
- `pl create <id> --type <type> [--content -]`: save knowledge
- `pl update <id> --add-tag <t> --globs "src/**"`: refine
- `pl clutch`: required pearls, highest priority first
"""


def _type_summary(pearls: list[Pearl]) -> str:
    counts = Counter(str(p.type) for p in pearls)
    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return ", ".join(f"{n} {t}" for t, n in ordered)


def _scope_summary(pearls: list[Pearl]) -> str:
    return ", ".join(sorted({s for p in pearls for s in p.scopes}))


def prime_text(store: Store, override_path: Path | None = None) -> str:
    """Session-priming summary that scales with catalog size.

    An existing PRIME.md override is returned verbatim.
    """
    if override_path is not None and override_path.is_file():
        return override_path.read_text(encoding="utf-8")

    pearls = store.all()
    count = len(pearls)
    head = "# Pearls Context\n\n"
    if count == 0:
        body = (
            "Pearls is installed but the catalog is empty. "
            "As you work, save reusable knowledge:\n\n"
        )
    elif count <= SMALL_CATALOG:
        body = (
            f"Your catalog has {count} pearls: {_type_summary(pearls)}\n\n"
            "Before working on unfamiliar code, check for existing knowledge "
            "with `pl context --for <path>`.\n\n"
        )
    else:
        scopes = _scope_summary(pearls)
        scope_line = f"\nScopes: {scopes}\n" if scopes else ""
        body = (
            f"Your catalog has {count} pearls: {_type_summary(pearls)}\n{scope_line}\n"
            'Search before starting work: `pl search "<query>" --semantic` '
            "or `pl context --for <path>`.\n\n"
        )
    return head + body + _TRIGGERS + "\n" + _REFERENCE
