"""pearls CLI: a knowledge catalog backed by JSONL, SQLite, and markdown files.

Commands:
    pearls init                    create .pearls/ in the current repo
    pearls create ID               add a pearl (content from --content, stdin, or a template)
    pearls show ID / cat ID        metadata / markdown body
    pearls list                    filtered listing
    pearls update ID               edit metadata
    pearls delete ID / archive ID  hard delete (--force) or soft archive
    pearls refs ID                 outgoing and incoming references
    pearls context [ID...]         markdown context (--for PATH, --scope SCOPE)
    pearls clutch                  required pearls by priority
    pearls search QUERY            keyword or --semantic search
    pearls sync                    rebuild the DB from pearls.jsonl (or --to-jsonl)
    pearls index                   vector index status / --rebuild
    pearls doctor                  consistency checks
    pearls introspect sqlite       generate pearls from a database schema
    pearls onboard                 add instructions to CLAUDE.md / agents.md
    pearls prime                   session-priming summary
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from pearls import context as ctxmod
from pearls.config import Paths, PearlsConfig, apply_env, find_root, init_catalog, load_config
from pearls.content import template_for
from pearls.doctor import ensure_passed, run_checks
from pearls.errors import AlreadyExistsError, ConfigError, NotFoundError, PearlsError
from pearls.index import ListOptions
from pearls.introspect import default_env_var, get_introspector
from pearls.introspect.generate import generate_pearls
from pearls.models import Pearl, Status, utc_now, validate_id
from pearls.onboard import TARGETS, onboard
from pearls.store import Store

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger("pearls.cli")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@dataclass
class CLIContext:
    """Per-invocation settings from the root group's options."""

    start: Path
    verbose: bool = False


@dataclass
class Session:
    store: Store
    paths: Paths
    cfg: PearlsConfig


@contextlib.contextmanager
def _errors() -> Iterator[None]:
    try:
        yield
    except PearlsError as exc:
        raise click.ClickException(str(exc)) from exc


def _find_root(obj: CLIContext) -> Path:
    try:
        return find_root(obj.start)
    except NotFoundError as exc:
        msg = "not in a pearls directory: run 'pearls init' first"
        raise click.ClickException(msg) from exc


def _load_cfg(paths: Paths) -> PearlsConfig:
    try:
        return load_config(paths.config_path)
    except ConfigError as exc:
        logger.warning("%s (using defaults)", exc)
        return PearlsConfig()


@contextlib.contextmanager
def _session(obj: CLIContext) -> Iterator[Session]:
    """Open the catalog for one command; PearlsError becomes a ClickException."""
    root = _find_root(obj)
    with _errors():
        cfg = _load_cfg(Paths(root))
        paths = cfg.paths(root)
        store = Store.open(paths, cfg)
        try:
            yield Session(store, paths, cfg)
        finally:
            store.close()


def _split(values: Iterable[str] | str) -> list[str]:
    """Flatten comma-separated option values, dropping blanks."""
    if isinstance(values, str):
        values = [values]
    return [v.strip() for raw in values for v in raw.split(",") if v.strip()]


def _echo_json(obj: Any) -> None:
    click.echo(json.dumps(obj, indent=2, ensure_ascii=False))


def _truncate(s: str, n: int) -> str:
    return s if len(s) <= n else s[: n - 3] + "..."


def _table(headers: list[str], rows: list[list[str]], indent: str = "") -> None:
    from rich.console import Console
    from rich.markup import escape
    from rich.padding import Padding
    from rich.table import Table

    table = Table(box=None, show_header=bool(headers), header_style="bold", pad_edge=False, padding=(0, 2, 0, 0))
    for h in headers or [""] * len(rows[0]):
        table.add_column(h, no_wrap=True)
    for r in rows:
        table.add_row(*(escape(cell) for cell in r))
    Console(highlight=False).print(Padding(table, (0, 0, 0, len(indent))))


def _expand_escapes(s: str) -> str:
    return s.replace("\\n", "\n").replace("\\t", "\t")


def _require(store: Store, pearl_id: str) -> Pearl:
    p = store.get(pearl_id)
    if p is None:
        msg = f"pearl not found: {pearl_id}"
        raise click.ClickException(msg)
    return p


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="pearls")
@click.option("--verbose", "-v", is_flag=True, help="Log progress to stderr")
@click.option(
    "--dir", "-C", "start", default=".", type=click.Path(file_okay=False, path_type=Path),
    help="Run as if started in this directory",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, start: Path) -> None:
    """pearls: a knowledge catalog for AI agents."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(message)s",
    )
    ctx.obj = CLIContext(start=start.resolve(), verbose=verbose)


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--name", "-n", default=None, help="Project name (default: directory name)")
@click.option("--quiet", "-q", is_flag=True, help="Suppress output")
@click.pass_obj
def init(obj: CLIContext, name: str | None, quiet: bool) -> None:
    """Create .pearls/ with config, log, database, and content directory."""
    root = obj.start
    try:
        paths = init_catalog(root, name=name)
    except AlreadyExistsError:
        if not quiet:
            click.echo(f"Already initialized in {root / '.pearls'}")
        return
    if not quiet:
        click.echo(f"✓ Created {paths.pearls_dir}")
        click.echo("\nReady to catalog knowledge. Try:")
        click.echo("  pearls create db.postgres.users --type table")


# ---------------------------------------------------------------------------
# create / show / cat / list
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("pearl_id", metavar="ID")
@click.option("--type", "-t", "pearl_type", default="table", show_default=True,
              help="Asset type (table, schema, database, api, endpoint, file, query, custom, ...)")
@click.option("--description", "-d", default="", help="Brief description")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable, or comma-separated)")
@click.option("--globs", default="", help="Comma-separated file globs for push retrieval")
@click.option("--scopes", default="", help="Comma-separated scopes for push retrieval")
@click.option("--content", default=None, help='Inline markdown ("-" reads stdin)')
@click.option("--required", is_flag=True, help="Include in `pearls clutch`")
@click.option("--priority", default=0, show_default=True, help="Higher comes first")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def create(
    obj: CLIContext,
    pearl_id: str,
    pearl_type: str,
    description: str,
    tags: tuple[str, ...],
    globs: str,
    scopes: str,
    content: str | None,
    required: bool,
    priority: int,
    as_json: bool,
) -> None:
    """Create a new pearl.

    \b
    pearls create db.postgres.users --type table -d "Registered users"
    pearls create conventions.errors --type convention --globs "src/**/*.py"
    echo "# Notes" | pearls create notes.design --type brainstorm --content -
    """
    with _session(obj) as s:
        p = Pearl.new(
            pearl_id,
            pearl_type,
            created_by=s.cfg.defaults.created_by or None,
            description=description,
            tags=_split(tags),
            globs=_split(globs),
            scopes=_split(scopes),
            required=required,
            priority=priority,
            status=s.cfg.defaults.status,
        )
        if content == "-":
            body = sys.stdin.read()
        elif content is not None:
            body = _expand_escapes(content)
        else:
            body = template_for(p)
        s.store.create(p, body)

    if as_json:
        _echo_json(p.to_dict())
        return
    click.echo(f"✓ Created pearl: {p.id}")
    click.echo(f"  Content: {p.content_path}")


@cli.command()
@click.argument("pearl_id", metavar="ID")
@click.option("--with-refs", is_flag=True, help="Include referenced pearls")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def show(obj: CLIContext, pearl_id: str, with_refs: bool, as_json: bool) -> None:
    """Show a pearl's metadata."""
    with _session(obj) as s:
        p = _require(s.store, pearl_id)
        refs = {r: s.store.get(r) for r in p.references} if with_refs else {}

    if as_json:
        out: dict[str, Any] = {"pearl": p.to_dict()}
        if with_refs and p.references:
            out["references"] = [r.to_dict() for r in refs.values() if r is not None]
        _echo_json(out)
        return

    click.echo(f"● {p.id}")
    click.echo(f"  Name:        {p.name}")
    if p.namespace:
        click.echo(f"  Namespace:   {p.namespace}")
    click.echo(f"  Type:        {p.type}")
    click.echo(f"  Status:      {p.status}")
    if p.description:
        click.echo(f"  Description: {p.description}")
    if p.tags:
        click.echo(f"  Tags:        {', '.join(p.tags)}")
    if p.globs:
        click.echo(f"  Globs:       {', '.join(p.globs)}")
    if p.scopes:
        click.echo(f"  Scopes:      {', '.join(p.scopes)}")
    if p.required or p.priority:
        click.echo(f"  Required:    {'yes' if p.required else 'no'} (priority {p.priority})")
    if p.content_path:
        click.echo(f"  Content:     {p.content_path}")
    if p.connection is not None:
        c = p.connection
        click.echo("  Connection:")
        click.echo(f"    Type:      {c.type}")
        if c.host:
            click.echo(f"    Host:      {c.host}")
        if c.port:
            click.echo(f"    Port:      {c.port}")
        if c.database:
            click.echo(f"    Database:  {c.database}")
    if p.references:
        click.echo("  References:")
        for ref in p.references:
            click.echo(f"    → {ref}")
        if with_refs:
            click.echo("\n  Referenced Pearls:")
            for ref_id, ref in refs.items():
                if ref is None:
                    click.echo(f"    {ref_id} (not found)")
                else:
                    click.echo(f"    ● {ref.id} [{ref.type}] {ref.description}")
    if p.parent:
        click.echo(f"  Parent:      {p.parent}")
    click.echo(f"  Created:     {p.created_at:%Y-%m-%d %H:%M} by {p.created_by}")
    click.echo(f"  Updated:     {p.updated_at:%Y-%m-%d %H:%M}")


@cli.command()
@click.argument("pearl_id", metavar="ID")
@click.pass_obj
def cat(obj: CLIContext, pearl_id: str) -> None:
    """Print a pearl's markdown content."""
    with _session(obj) as s:
        p = _require(s.store, pearl_id)
        if not p.content_path:
            msg = "pearl has no content file"
            raise click.ClickException(msg)
        body = s.store.get_content(p)
    click.echo(body, nl=False)


def _list_rows(pearls: list[Pearl]) -> list[list[str]]:
    return [[p.id, str(p.type), str(p.status), _truncate(p.description, 50)] for p in pearls]


@cli.command("list")
@click.option("--namespace", "-n", default="", help="Namespace (includes everything below it)")
@click.option("--type", "-t", "pearl_type", default="", help="Filter by type")
@click.option("--status", "-s", default="", help="Filter by status")
@click.option("--tag", default="", help="Filter by tag")
@click.option("--scope", default="", help="Filter by scope")
@click.option("--required", "required", flag_value=True, default=None, help="Only required pearls")
@click.option("--limit", default=0, help="Max results (0 = all)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def list_cmd(
    obj: CLIContext,
    namespace: str,
    pearl_type: str,
    status: str,
    tag: str,
    scope: str,
    required: bool | None,
    limit: int,
    as_json: bool,
) -> None:
    """List pearls, highest priority first."""
    with _session(obj) as s:
        if status:
            Status.parse(status)
        pearls = s.store.list(ListOptions(
            namespace=namespace, type=pearl_type, status=status, tag=tag,
            scope=scope, required=required, limit=limit,
        ))

    if as_json:
        _echo_json({"pearls": [p.to_dict() for p in pearls], "count": len(pearls)})
        return
    if not pearls:
        click.echo("No pearls found.")
        return
    _table(["ID", "TYPE", "STATUS", "DESCRIPTION"], _list_rows(pearls))
    click.echo(f"\n{len(pearls)} pearl(s)")


# ---------------------------------------------------------------------------
# update / delete / archive
# ---------------------------------------------------------------------------


def _add_unique(items: list[str], new: Iterable[str]) -> list[str]:
    out = list(items)
    for x in new:
        if x not in out:
            out.append(x)
    return out


@cli.command()
@click.argument("pearl_id", metavar="ID")
@click.option("--description", "-d", default=None, help="New description")
@click.option("--status", default=None, help="active, deprecated, or archived")
@click.option("--type", "-t", "pearl_type", default=None, help="New asset type")
@click.option("--globs", default=None, help='Replace globs (comma-separated; "" clears)')
@click.option("--scopes", default=None, help='Replace scopes (comma-separated; "" clears)')
@click.option("--add-tag", multiple=True, help="Add tag(s)")
@click.option("--remove-tag", multiple=True, help="Remove tag(s)")
@click.option("--add-ref", multiple=True, help="Add reference(s)")
@click.option("--remove-ref", multiple=True, help="Remove reference(s)")
@click.option("--required/--no-required", default=None, help="Toggle required context")
@click.option("--priority", default=None, type=int, help="New priority")
@click.option("--content", default=None, help='Replace markdown body ("-" reads stdin)')
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def update(
    obj: CLIContext,
    pearl_id: str,
    description: str | None,
    status: str | None,
    pearl_type: str | None,
    globs: str | None,
    scopes: str | None,
    add_tag: tuple[str, ...],
    remove_tag: tuple[str, ...],
    add_ref: tuple[str, ...],
    remove_ref: tuple[str, ...],
    required: bool | None,
    priority: int | None,
    content: str | None,
    as_json: bool,
) -> None:
    """Update a pearl's metadata (and optionally its content).

    \b
    pearls update db.postgres.users --add-tag pii --status deprecated
    pearls update db.postgres.users --globs "src/models/**" --scopes backend
    pearls update db.postgres.users --required --priority 10
    """
    with _session(obj) as s:
        p = _require(s.store, pearl_id)
        changed = False
        if description is not None:
            p.description = description
            changed = True
        if status is not None:
            p.status = str(Status.parse(status))
            changed = True
        if pearl_type is not None:
            p.type = pearl_type
            changed = True
        if globs is not None:
            p.globs = _split(globs)
            changed = True
        if scopes is not None:
            p.scopes = _split(scopes)
            changed = True
        if add_tag:
            p.tags = _add_unique(p.tags, _split(add_tag))
            changed = True
        if remove_tag:
            drop = set(_split(remove_tag))
            p.tags = [t for t in p.tags if t not in drop]
            changed = True
        if add_ref:
            refs = _split(add_ref)
            for r in refs:
                validate_id(r)
            p.references = _add_unique(p.references, refs)
            changed = True
        if remove_ref:
            drop = set(_split(remove_ref))
            p.references = [r for r in p.references if r not in drop]
            changed = True
        if required is not None:
            p.required = required
            changed = True
        if priority is not None:
            p.priority = priority
            changed = True
        body = None
        if content is not None:
            body = sys.stdin.read() if content == "-" else _expand_escapes(content)
            changed = True
        if not changed:
            msg = "no updates specified"
            raise click.ClickException(msg)
        p.updated_at = utc_now()
        s.store.update(p, body)

    if as_json:
        _echo_json(p.to_dict())
        return
    click.echo(f"✓ Updated pearl: {p.id}")


def _archive(store: Store, pearl_id: str) -> Pearl:
    p = _require(store, pearl_id)
    p.status = Status.ARCHIVED
    p.updated_at = utc_now()
    store.update(p)
    return p


@cli.command()
@click.argument("pearl_id", metavar="ID")
@click.option("--force", "-f", is_flag=True, help="Permanently delete (default: archive)")
@click.option("--recursive", "-r", is_flag=True, help="Delete the whole namespace")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_obj
def delete(obj: CLIContext, pearl_id: str, force: bool, recursive: bool, yes: bool) -> None:
    """Archive a pearl, or delete it for good with --force."""
    with _session(obj) as s:
        if not force:
            p = _archive(s.store, pearl_id)
            click.echo(f"✓ Archived pearl: {p.id} (use --force to permanently delete)")
            return

        if recursive:
            targets = s.store.list(ListOptions(namespace=pearl_id))
            own = s.store.get(pearl_id)
            if own is not None:
                targets.append(own)
            if not targets:
                msg = f"no pearls found in namespace: {pearl_id}"
                raise click.ClickException(msg)
        else:
            targets = [_require(s.store, pearl_id)]

        if not yes:
            if len(targets) > 1 or recursive:
                click.echo(f"This will permanently delete {len(targets)} pearl(s):")
                for p in targets:
                    click.echo(f"  - {p.id}")
                prompt = "\nContinue?"
            else:
                prompt = f"Permanently delete {pearl_id}?"
            if not click.confirm(prompt, default=False):
                click.echo("Aborted.")
                return

        for p in targets:
            s.store.delete(p.id)
            click.echo(f"✓ Deleted: {p.id}")


@cli.command()
@click.argument("pearl_id", metavar="ID")
@click.pass_obj
def archive(obj: CLIContext, pearl_id: str) -> None:
    """Archive a pearl (soft delete: it stays in the catalog)."""
    with _session(obj) as s:
        p = _archive(s.store, pearl_id)
    click.echo(f"✓ Archived pearl: {p.id}")


# ---------------------------------------------------------------------------
# refs / context / clutch / search
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("pearl_id", metavar="ID")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def refs(obj: CLIContext, pearl_id: str, as_json: bool) -> None:
    """Show outgoing and incoming references."""
    with _session(obj) as s:
        p = _require(s.store, pearl_id)
        outgoing = [(r, s.store.get(r)) for r in p.references]
        incoming = s.store.find_referencing(pearl_id)

    if as_json:
        _echo_json({
            "id": pearl_id,
            "references": list(p.references),
            "referenced_by": [q.id for q in incoming],
        })
        return

    click.echo(f"{pearl_id}\n")
    if not outgoing and not incoming:
        click.echo("No references.")
        return
    if outgoing:
        click.echo("References (outgoing):")
        rows = [
            [f"→ {r}", str(q.type), _truncate(q.description, 40)] if q else [f"→ {r}", "(not found)", ""]
            for r, q in outgoing
        ]
        _table([], rows, indent="  ")
    if incoming:
        if outgoing:
            click.echo()
        click.echo("Referenced by (incoming):")
        _table([], [[f"← {q.id}", str(q.type), _truncate(q.description, 40)] for q in incoming], indent="  ")


@cli.command()
@click.argument("ids", nargs=-1)
@click.option("--for", "paths", multiple=True, help="File path matched against pearl globs (repeatable)")
@click.option("--scope", "scopes", multiple=True, help="Scope (repeatable)")
@click.option("--with-refs", is_flag=True, help="Include referenced pearls")
@click.option("--brief", is_flag=True, help="Metadata only, no content")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def context(
    obj: CLIContext,
    ids: tuple[str, ...],
    paths: tuple[str, ...],
    scopes: tuple[str, ...],
    with_refs: bool,
    brief: bool,
    as_json: bool,
) -> None:
    """Markdown context for agents from IDs, file paths, and scopes.

    \b
    pearls context db.postgres.users db.postgres.orders --with-refs
    pearls context --for src/payments/charge.py --scope payments
    """
    if not (ids or paths or scopes):
        msg = "give at least one ID, --for PATH, or --scope SCOPE"
        raise click.UsageError(msg)
    with _session(obj) as s:
        got = ctxmod.collect(s.store, ids=ids, paths=paths, scopes=scopes, with_refs=with_refs)
        for missing in got.missing:
            click.echo(f"Warning: pearl not found: {missing}", err=True)
        if as_json:
            _echo_json({"pearls": [p.to_dict() for p in got.pearls], "count": len(got.pearls)})
            return
        text = ctxmod.render(s.store, got.pearls, brief=brief)
    click.echo(text, nl=False)


@cli.command()
@click.option("--brief", is_flag=True, help="Metadata only, no content")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def clutch(obj: CLIContext, brief: bool, as_json: bool) -> None:
    """Required pearls, highest priority first (for session priming)."""
    with _session(obj) as s:
        pearls = s.store.required_context()
        if as_json:
            _echo_json({"pearls": [p.to_dict() for p in pearls], "count": len(pearls)})
            return
        text = ctxmod.render(s.store, pearls, brief=brief)
    click.echo(text, nl=False)


def _matches(p: Pearl, pearl_type: str, status: str, tag: str) -> bool:
    if pearl_type and p.type != pearl_type:
        return False
    if status and p.status != status:
        return False
    return not tag or tag in p.tags


@cli.command()
@click.argument("query")
@click.option("--type", "-t", "pearl_type", default="", help="Filter by type")
@click.option("--status", "-s", default="", help="Filter by status")
@click.option("--tag", default="", help="Filter by tag")
@click.option("--limit", default=50, show_default=True, help="Max results")
@click.option("--semantic", is_flag=True, help="Natural-language vector search")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def search(
    obj: CLIContext,
    query: str,
    pearl_type: str,
    status: str,
    tag: str,
    limit: int,
    semantic: bool,
    as_json: bool,
) -> None:
    """Search pearls by keyword (or meaning, with --semantic)."""
    with _session(obj) as s:
        if semantic:
            if s.store.embedder is None:
                msg = (
                    "semantic search requires vector search to be enabled\n"
                    f"Set [vector_search] enabled = true in {s.paths.config_path}, "
                    "then run 'pearls index --rebuild'"
                )
                raise click.ClickException(msg)
            hits = [
                (p, 1.0 / (1.0 + d)) for p, d in s.store.search_semantic(query, limit)
                if _matches(p, pearl_type, status, tag)
            ]
        else:
            hits = [(p, 0.0) for p in s.store.search(query, limit) if _matches(p, pearl_type, status, tag)]

    if as_json:
        out: dict[str, Any] = {"query": query, "count": len(hits)}
        if semantic:
            out["semantic"] = True
            out["results"] = [{"pearl": p.to_dict(), "similarity": round(sim, 4)} for p, sim in hits]
        else:
            out["results"] = [p.to_dict() for p, _ in hits]
        _echo_json(out)
        return

    kind = "semantic result(s)" if semantic else "result(s)"
    if not hits:
        click.echo(f"No {'semantic ' if semantic else ''}results for {query!r}")
        return
    if semantic:
        rows = [[f"{sim:.2f}", p.id, str(p.type), _truncate(p.description, 45)] for p, sim in hits]
        _table(["SCORE", "ID", "TYPE", "DESCRIPTION"], rows)
    else:
        _table(["ID", "TYPE", "STATUS", "DESCRIPTION"], _list_rows([p for p, _ in hits]))
    click.echo(f"\n{len(hits)} {kind} for {query!r}")


# ---------------------------------------------------------------------------
# sync / index / doctor
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--to-jsonl", is_flag=True, help="Rewrite pearls.jsonl from the database")
@click.option("--refresh-hashes", is_flag=True, help="Recompute content hashes from files")
@click.pass_obj
def sync(obj: CLIContext, to_jsonl: bool, refresh_hashes: bool) -> None:
    """Rebuild the database from pearls.jsonl (the source of truth)."""
    with _session(obj) as s:
        if refresh_hashes:
            click.echo("Refreshing content hashes...")
            n = s.store.refresh_content_hashes()
            click.echo(f"✓ Content hashes updated ({n} changed)")
            return
        if to_jsonl:
            click.echo("Exporting database to JSONL...")
            n = s.store.sync_to_log()
            click.echo(f"✓ Database exported to JSONL ({n} pearls)")
            return
        click.echo("Rebuilding database from JSONL...")
        n = s.store.sync_from_log()
        click.echo(f"✓ Database rebuilt ({n} pearls)")
        if s.store.embedder is not None:
            click.echo("Run 'pearls index --rebuild' to refresh embeddings.")


def _percent(part: int, whole: int) -> float:
    return 0.0 if whole == 0 else 100.0 * part / whole


@cli.command()
@click.option("--rebuild", is_flag=True, help="Re-embed every pearl")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def index(obj: CLIContext, rebuild: bool, as_json: bool) -> None:
    """Vector search index status, or rebuild it."""
    with _session(obj) as s:
        enabled = s.cfg.vector_search.enabled
        if rebuild:
            if not enabled or s.store.embedder is None:
                msg = f"vector search is disabled in config\nSet [vector_search] enabled = true in {s.paths.config_path}"
                raise click.ClickException(msg)
            click.echo("Embedding pearls...")
            indexed, failed = s.store.rebuild_embeddings()
            click.echo(f"✓ Indexed {indexed} pearl(s)" + (f" ({failed} failed)" if failed else ""))
            return
        total = s.store.count()
        embedded = s.store.embedding_count()

    if as_json:
        _echo_json({
            "vector_search_enabled": enabled,
            "pearl_count": total,
            "embedding_count": embedded,
            "indexed_percent": _percent(embedded, total),
        })
        return
    click.echo("Vector Search Index")
    click.echo("───────────────────")
    click.echo(f"Enabled:     {str(enabled).lower()}")
    click.echo(f"Pearls:      {total}")
    click.echo(f"Indexed:     {embedded} ({_percent(embedded, total):.0f}%)")
    if embedded < total:
        click.echo("\nRun 'pearls index --rebuild' to index all pearls.")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def doctor(obj: CLIContext, as_json: bool) -> None:
    """Check the log, database, and content files for drift."""
    with _session(obj) as s:
        checks = run_checks(s.store, s.paths.config_path)

    if as_json:
        _echo_json([c.to_dict() for c in checks])
        return
    for c in checks:
        click.echo(f"{'✓' if c.passed else '✗'} {c.name}")
        for issue in c.issues:
            click.echo(f"    {issue}")
    with _errors():
        ensure_passed(checks)


# ---------------------------------------------------------------------------
# introspect / onboard / prime
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("db_type", metavar="TYPE")
@click.option("--prefix", required=True, help="Namespace for generated pearls (e.g. db.local)")
@click.option("--env", "env_var", default="", help="Env var holding the connection string")
@click.option("--schema", default="", help="Only this schema")
@click.option("--dry-run", is_flag=True, help="Print what would be created")
@click.option("--skip-existing", is_flag=True, help="Keep pearls that already exist")
@click.pass_obj
def introspect(
    obj: CLIContext,
    db_type: str,
    prefix: str,
    env_var: str,
    schema: str,
    dry_run: bool,
    skip_existing: bool,
) -> None:
    """Generate pearls from a live database schema.

    Connection strings come from .env in the repo root (or the environment):
    PEARLS_SQLITE_PATH for sqlite unless --env names another variable.

    \b
    pearls introspect sqlite --prefix db.local
    pearls introspect sqlite --prefix db.app --env APP_DB --dry-run
    """
    root = _find_root(obj)
    with _errors():
        validate_id(prefix)
        driver = get_introspector(db_type)
        apply_env(root)
        env_var = env_var or default_env_var(db_type)
        dsn = os.environ.get(env_var, "")
        if not dsn:
            msg = f"connection string not found: set {env_var} in .env or environment"
            raise click.ClickException(msg)

        click.echo(f"Connecting to {db_type}...")
        driver.connect(dsn)
        try:
            schemas = driver.schemas()
            if schema:
                if schema not in schemas:
                    msg = f"schema {schema!r} not found (available: {', '.join(schemas)})"
                    raise click.ClickException(msg)
                schemas = [schema]
            click.echo(f"Found {len(schemas)} schema(s): {', '.join(schemas)}")
            tables = {}
            for name in schemas:
                tables[name] = driver.tables(name)
                click.echo(f"  {name}: {len(tables[name])} table(s)")
        finally:
            driver.close()

        generated = generate_pearls(prefix, tables, env_var, db_type=db_type)
        if dry_run:
            click.echo(f"\nDry run: would create {len(generated)} pearl(s):")
            for g in generated:
                click.echo(f"  {g.pearl.id} ({g.pearl.type})")
            return

    created = skipped = 0
    with _session(obj) as s:
        for g in generated:
            if s.store.get(g.pearl.id) is not None:
                if skip_existing:
                    skipped += 1
                    continue
                s.store.delete(g.pearl.id)
            s.store.create(g.pearl, g.content or f"# {g.pearl.name}\n")
            created += 1
    click.echo(f"\n✓ Created {created} pearl(s)" + (f" ({skipped} skipped)" if skipped else ""))


@cli.command("onboard")
@click.option("--target", type=click.Choice(sorted(TARGETS)), default="claude", show_default=True,
              help="Which instruction file to update")
@click.option("--force", is_flag=True, help="Replace an existing pearls section")
@click.pass_obj
def onboard_cmd(obj: CLIContext, target: str, force: bool) -> None:
    """Add pearls usage instructions to CLAUDE.md and/or agents.md."""
    with _errors():
        results = onboard(obj.start, target=target, force=force)
    for name, changed in results:
        click.echo(f"✓ Updated {name}" if changed else f"  {name} already has a pearls section (use --force)")


@cli.command()
@click.pass_obj
def prime(obj: CLIContext) -> None:
    """Catalog summary and command reference for priming an agent session.

    Prints .pearls/PRIME.md instead, if it exists. Prints nothing outside a catalog.
    """
    try:
        find_root(obj.start)
    except NotFoundError:
        return
    with _session(obj) as s:
        text = ctxmod.prime_text(s.store, s.paths.prime_path)
    click.echo(text, nl=False)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
