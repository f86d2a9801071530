"""Inject pearls usage instructions into agent instruction files.

The section is fenced by HTML comment markers so re-running is a no-op and
`--force` can replace it in place without touching the rest of the file.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pearls.errors import ValidationError

if TYPE_CHECKING:
    from pathlib import Path

MARKER_START = "<!-- pearls:start -->"
MARKER_END = "<!-- pearls:end -->"

TARGETS = {
    "claude": ["CLAUDE.md"],
    "agents": ["agents.md"],
    "all": ["CLAUDE.md", "agents.md"],
}

SECTION = f"""\
{MARKER_START}
## Pearls - Context Catalog

This project keeps reusable knowledge in Pearls: data schemas, API docs,
conventions, design decisions, runbooks.

### Retrieving context

**Push (based on what you are working on):**
- `pl context --for <path>`: pearls whose globs match the file
- `pl context --scope <scope>`: pearls for a domain
- `pl context --for <path> --scope <scope>`: union of both

**Pull (search for what you need):**
- `pl search "query" --semantic`: natural language search
- `pl search "query"`: keyword search
- `pl context <ids...>`: specific pearls by ID

### Managing knowledge
- `pl create <id> --type <type>`: create a pearl (type is free-form)
- `pl create <id> --type convention --globs "src/**/*.ts" --scopes "error-handling"`
- `echo "..." | pl create <id> --type brainstorm --content -`: content from stdin
- `pl update <id> --globs "src/payments/**" --scopes "payments"`
- `pl list`, `pl show <id>`, `pl cat <id>`, `pl refs <id>`
- `pl introspect sqlite --prefix <ns>`: bootstrap docs from a database
- `pl doctor`: check catalog health

### When to use Pearls
- Before working on a feature, run `pl context --for <file>`
- Before querying a database, run `pl search` for its schema docs
- After a design session, save the outcome with `pl create`
{MARKER_END}"""


def onboard_file(path: Path, force: bool = False) -> bool:
    """Add (or with force, replace) the pearls section. Returns True if the file changed."""
    existing = path.read_text(encoding="utf-8") if path.exists() else ""
    start = existing.find(MARKER_START)
    end = existing.find(MARKER_END)
    has_section = start >= 0 and end > start

    if has_section and not force:
        return False
    if has_section:
        result = existing[:start] + SECTION + existing[end + len(MARKER_END):]
    else:
        if existing and not existing.endswith("\n"):
            existing += "\n"
        if existing:
            existing += "\n"
        result = existing + SECTION + "\n"
    if result == existing:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(result, encoding="utf-8")
    return True


def onboard(root: Path, target: str = "claude", force: bool = False) -> list[tuple[str, bool]]:
    """Onboard every file for target. Returns (filename, changed) pairs."""
    try:
        names = TARGETS[target]
    except KeyError:
        msg = f"invalid target {target!r}: must be claude, agents, or all"
        raise ValidationError(msg) from None
    return [(name, onboard_file(root / name, force=force)) for name in names]
