"""Turn introspected tables into database/schema/table pearls."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from pearls.models import AssetType, ConnectionInfo, Pearl

if TYPE_CHECKING:
    from pearls.introspect import Table

CREATED_BY = "pearls-introspect"

_INVALID = re.compile(r"[^a-z0-9_-]+")


@dataclass
class GeneratedPearl:
    pearl: Pearl
    content: str = ""


def id_segment(name: str) -> str:
    """Lowercase a table/schema name into a valid ID segment ("Order Items" -> "order_items")."""
    seg = _INVALID.sub("_", name.strip().lower()).strip("_")
    if not seg:
        return "unnamed"
    if not seg[0].isalpha():
        seg = "t_" + seg
    return seg


def table_content(table: Table, prefix: str) -> str:
    """Markdown body listing columns, foreign keys, and indexes."""
    lines = [f"# {table.name}", "", "## Columns", ""]
    lines.append("| Column | Type | Nullable | Default | Constraints |")
    lines.append("|--------|------|----------|---------|-------------|")
    for col in table.columns:
        constraints = col.constraints
        if col.primary_key:
            constraints = f"PRIMARY KEY, {constraints}" if constraints else "PRIMARY KEY"
        nullable = "YES" if col.nullable else "NO"
        lines.append(f"| {col.name} | {col.data_type} | {nullable} | {col.default} | {constraints} |")

    if table.foreign_keys:
        lines += ["", "## Foreign Keys", "", "| Column | References |", "|--------|-----------|"]
        for fk in table.foreign_keys:
            ref_schema = id_segment(fk.references_schema or table.schema)
            target = f"{prefix}.{ref_schema}.{id_segment(fk.references_table)}.{fk.references_column}"
            lines.append(f"| {fk.column} | {target} |")

    if table.indexes:
        lines += ["", "## Indexes", "", "| Name | Columns | Unique |", "|------|---------|--------|"]
        for idx in table.indexes:
            unique = "YES" if idx.unique else "NO"
            lines.append(f"| {idx.name} | {', '.join(idx.columns)} | {unique} |")
    return "\n".join(lines) + "\n"


def generate_pearls(
    prefix: str,
    tables_by_schema: dict[str, list[Table]],
    env_var: str,
    db_type: str = "",
) -> list[GeneratedPearl]:
    """One database pearl, then per schema (sorted) a schema pearl and its table pearls."""
    db = Pearl.new(prefix, AssetType.DATABASE, created_by=CREATED_BY)
    db.connection = ConnectionInfo(type=db_type, host=f"${{{env_var}}}")
    results = [GeneratedPearl(db)]

    for schema in sorted(tables_by_schema):
        schema_id = f"{prefix}.{id_segment(schema)}"
        sp = Pearl.new(schema_id, AssetType.SCHEMA, created_by=CREATED_BY, parent=prefix)
        results.append(GeneratedPearl(sp))

        for table in tables_by_schema[schema]:
            refs: list[str] = []
            for fk in table.foreign_keys:
                ref_schema = id_segment(fk.references_schema or schema)
                ref_id = f"{prefix}.{ref_schema}.{id_segment(fk.references_table)}"
                if ref_id not in refs:
                    refs.append(ref_id)
            tp = Pearl.new(
                f"{schema_id}.{id_segment(table.name)}",
                AssetType.TABLE,
                created_by=CREATED_BY,
                parent=schema_id,
                references=refs,
            )
            body = table_content(replace(table, schema=table.schema or schema), prefix)
            results.append(GeneratedPearl(tp, body))
    return results
