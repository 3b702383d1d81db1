from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jinja2 import TemplateError

from transform_copilot.core.adapters.base import WarehouseAdapter
from transform_copilot.core.errors import CompilationError
from transform_copilot.core.manifest.models import Manifest, Node
from transform_copilot.core.testing.generic import build_generic_test_sql

from .context import RelationProxy, TargetProxy, make_env_var, make_environment, make_var, parse_ref_args

_log = logging.getLogger("transform.compiler")

EPHEMERAL_PREFIX = "__cte__"

_WITH_RE = re.compile(r"^((?:\s*(?:--[^\n]*(?:\n|$)|/\*.*?\*/))*)\s*with\b", re.IGNORECASE | re.DOTALL)


@dataclass
class CompiledNode:
    unique_id: str
    sql: str
    ephemerals: List[str] = field(default_factory=list)


def inject_ctes(sql: str, ctes: List[Tuple[str, str]]) -> str:
    """Prepend ``name as (sql)`` CTEs, merging into an existing ``with``."""
    if not ctes:
        return sql
    rendered = ",\n".join(f"{name} as (\n{body.strip()}\n)" for name, body in ctes)
    m = _WITH_RE.match(sql)
    if m:
        # Leading comments stay ahead of the merged clause.
        lead = m.group(1).strip()
        lead = lead + "\n" if lead else ""
        return f"{lead}with {rendered},\n{sql[m.end():].lstrip()}"
    return f"with {rendered}\n{sql.lstrip()}"


class Compiler:
    def __init__(
        self,
        manifest: Manifest,
        adapter: WarehouseAdapter,
        *,
        vars_: Dict[str, Any],
        target: TargetProxy,
    ):
        self.manifest = manifest
        self.adapter = adapter
        self.vars = dict(vars_)
        self.target = target
        self.env = make_environment()

    def relation_sql(self, node: Node) -> str:
        if node.is_ephemeral:
            return EPHEMERAL_PREFIX + node.name
        if node.relation is None:
            raise CompilationError("Node has no relation", node=node.unique_id)
        return self.adapter.render_relation(node.relation)

    def _proxy(self, node: Node) -> RelationProxy:
        rel = node.relation
        return RelationProxy(
            self.relation_sql(node),
            identifier=rel.identifier if rel else node.name,
            schema=rel.schema if rel else "",
            database=rel.database if rel else None,
        )

    def _context(self, node: Node, ephemerals: List[str], is_incremental: bool) -> Dict[str, Any]:
        manifest = self.manifest

        def ref(*args):
            name = parse_ref_args(args, node.unique_id)
            target_node = manifest.find_refable(name)
            if target_node is None:
                raise CompilationError(f"ref('{name}') does not match any enabled node", node=node.unique_id)
            if target_node.is_ephemeral and target_node.unique_id not in ephemerals:
                ephemerals.append(target_node.unique_id)
            return self._proxy(target_node)

        def source(source_name, table_name):
            src = manifest.find_source(str(source_name), str(table_name))
            if src is None:
                raise CompilationError(
                    f"source('{source_name}', '{table_name}') is not declared", node=node.unique_id
                )
            return self._proxy(src)

        return {
            "ref": ref,
            "source": source,
            "config": lambda **kwargs: "",
            "is_incremental": lambda: is_incremental,
            "this": self._proxy(node) if node.relation is not None else RelationProxy(node.name),
            "var": make_var(self.vars, node.unique_id),
            "env_var": make_env_var(node.unique_id),
            "target": self.target,
        }

    def render(self, node: Node, text: str, *, is_incremental: bool = False) -> Tuple[str, List[str]]:
        ephemerals: List[str] = []
        ctx = self._context(node, ephemerals, is_incremental)
        try:
            sql = self.env.from_string(text).render(**ctx)
        except TemplateError as exc:
            raise CompilationError(f"Jinja error: {exc}", node=node.unique_id) from exc
        return sql, ephemerals

    def _collect_ctes(self, uids: List[str], seen: Dict[str, str], order: List[Tuple[str, str]]) -> None:
        for uid in uids:
            if uid in seen:
                continue
            eph = self.manifest.get(uid)
            body, nested = self.render(eph, eph.raw_sql)
            self._collect_ctes(nested, seen, order)
            seen[uid] = body
            order.append((EPHEMERAL_PREFIX + eph.name, body))

    def compile(self, node: Node, *, is_incremental: bool = False) -> CompiledNode:
        if node.resource_type == "source":
            raise CompilationError("Sources are not compiled", node=node.unique_id)

        meta = node.test_metadata
        if node.resource_type == "test" and meta is not None and meta.attached_node:
            sql, ephemerals = self._compile_generic_test(node)
        else:
            sql, ephemerals = self.render(node, node.raw_sql, is_incremental=is_incremental)

        ctes: List[Tuple[str, str]] = []
        self._collect_ctes(ephemerals, {}, ctes)
        final = inject_ctes(sql.strip(), ctes)
        return CompiledNode(unique_id=node.unique_id, sql=final, ephemerals=list(ephemerals))

    def _compile_generic_test(self, node: Node) -> Tuple[str, List[str]]:
        meta = node.test_metadata
        attached = self.manifest.get(meta.attached_node)
        ephemerals: List[str] = []
        if attached.is_ephemeral:
            ephemerals.append(attached.unique_id)

        def render_to(expr: str) -> str:
            text = expr if "{{" in expr else "{{ " + expr + " }}"
            rendered, nested = self.render(node, text)
            for uid in nested:
                if uid not in ephemerals:
                    ephemerals.append(uid)
            return rendered.strip()

        sql = build_generic_test_sql(
            meta.name,
            relation=self.relation_sql(attached),
            column=meta.column_name,
            kwargs=meta.kwargs,
            render_to=render_to,
        )
        return sql, ephemerals


def write_compiled(target_dir: Path, project_name: str, node: Node, sql: str) -> Path:
    rel = Path(node.path)
    if node.resource_type == "test" and node.test_metadata and node.test_metadata.attached_node:
        rel = Path("generic_tests") / f"{node.name}.sql"
    out = target_dir / "compiled" / project_name / rel
    if node.resource_type == "snapshot" and out.suffix == ".sql" and out.stem != node.name:
        out = out.with_name(f"{out.stem}__{node.name}.sql")
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(sql + "\n", encoding="utf-8")
    return out
