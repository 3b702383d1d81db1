"""
Node selection.

    orders            the node named "orders"
    +orders           orders and all its ancestors
    orders+           orders and all its descendants
    2+orders+1        two levels up, one level down
    tag:nightly       nodes tagged "nightly"
    path:models/marts nodes under a path
    source:raw        every table of source "raw" (source:raw.orders for one)
    config.materialized:incremental
    resource_type:seed

Space-separated selectors are unioned, comma-joined ones intersected.
"""
from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Set

from transform_copilot.core.errors import SelectionError
from transform_copilot.core.manifest.models import Manifest, Node

from .lineage import LineageGraph

_TERM_RE = re.compile(r"^(?:(\d*)\+)?(.+?)(?:\+(\d*))?$")


@dataclass(frozen=True)
class SelectionTerm:
    value: str
    method: Optional[str] = None
    parents: bool = False
    parents_depth: Optional[int] = None
    children: bool = False
    children_depth: Optional[int] = None


def parse_term(raw: str) -> SelectionTerm:
    text = raw.strip()
    m = _TERM_RE.match(text)
    if not m or not m.group(2):
        raise SelectionError(f"Invalid selector '{raw}'")
    up, value, down = m.group(1), m.group(2), m.group(3)
    method = None
    if ":" in value:
        method, value = value.split(":", 1)
    return SelectionTerm(
        value=value,
        method=method,
        parents=up is not None,
        parents_depth=int(up) if up else None,
        children=down is not None,
        children_depth=int(down) if down else None,
    )


def _match(node: Node, term: SelectionTerm) -> bool:
    method, value = term.method, term.value
    if method is None:
        if node.resource_type == "source":
            return False
        return fnmatch.fnmatchcase(node.name, value) or ".".join(node.fqn[1:]) == value
    if method == "tag":
        return value in node.tags
    if method == "path":
        want = value.rstrip("/")
        return node.path == want or node.path.startswith(want + "/")
    if method == "source":
        if node.resource_type != "source":
            return False
        if "." in value:
            src, table = value.split(".", 1)
            return node.source_name == src and fnmatch.fnmatchcase(node.name, table)
        return node.source_name == value
    if method == "resource_type":
        return node.resource_type == value
    if method.startswith("config."):
        key = method.split(".", 1)[1]
        dumped = node.config.model_dump(by_alias=True)
        actual = dumped.get(key, node.config.extra(key))
        if isinstance(actual, list):
            return value in [str(a) for a in actual]
        return str(actual).lower() == value.lower()
    raise SelectionError(f"Unknown selection method '{method}'")


class NodeSelector:
    def __init__(self, manifest: Manifest, graph: LineageGraph):
        self.manifest = manifest
        self.graph = graph

    def _select_term(self, term: SelectionTerm) -> Set[str]:
        nodes = self.manifest.all_nodes()
        base = {uid for uid, n in nodes.items() if _match(n, term)}
        if not base and term.method is None:
            raise SelectionError(f"Selector '{term.value}' does not match any node")
        out = set(base)
        for uid in base:
            if term.parents:
                out |= self.graph.ancestors(uid, term.parents_depth)
            if term.children:
                out |= self.graph.descendants(uid, term.children_depth)
        return out

    def _select_spec(self, specs: Sequence[str]) -> Set[str]:
        selected: Set[str] = set()
        for spec in specs:
            for token in spec.split():
                parts = [p for p in token.split(",") if p]
                if not parts:
                    continue
                acc = self._select_term(parse_term(parts[0]))
                for p in parts[1:]:
                    acc &= self._select_term(parse_term(p))
                selected |= acc
        return selected

    def select(
        self,
        select: Optional[Sequence[str]] = None,
        exclude: Optional[Sequence[str]] = None,
        *,
        resource_types: Optional[Iterable[str]] = None,
        include_tests: bool = True,
    ) -> Set[str]:
        if select:
            chosen = self._select_spec(select)
        else:
            chosen = set(self.manifest.nodes)

        if include_tests:
            for uid, node in self.manifest.nodes.items():
                if node.resource_type != "test" or uid in chosen:
                    continue
                parents = [p for p in node.depends_on if not p.startswith("source.")] or node.depends_on
                if parents and all(p in chosen for p in parents):
                    chosen.add(uid)

        if exclude:
            chosen -= self._select_spec(exclude)

        if resource_types is not None:
            kinds = set(resource_types)
            chosen = {uid for uid in chosen if self.manifest.get(uid).resource_type in kinds}
        return chosen


def select_nodes(
    manifest: Manifest,
    graph: LineageGraph,
    select: Optional[List[str]] = None,
    exclude: Optional[List[str]] = None,
    *,
    resource_types: Optional[Iterable[str]] = None,
) -> Set[str]:
    return NodeSelector(manifest, graph).select(select, exclude, resource_types=resource_types)
