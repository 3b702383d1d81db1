from __future__ import annotations

from collections import defaultdict, deque
from typing import Dict, Iterable, List, Optional, Set

from transform_copilot.core.errors import CircularDependencyError
from transform_copilot.core.manifest.models import Manifest


class LineageGraph:
    """Directed graph parent -> child over manifest unique ids."""

    def __init__(self):
        self.nodes: Set[str] = set()
        self.parents: Dict[str, List[str]] = defaultdict(list)
        self.children: Dict[str, List[str]] = defaultdict(list)

    @classmethod
    def from_manifest(cls, manifest: Manifest) -> "LineageGraph":
        g = cls()
        for uid in manifest.all_nodes():
            g.add_node(uid)
        for node in manifest.nodes.values():
            for dep in node.depends_on:
                g.add_edge(dep, node.unique_id)
        return g

    def add_node(self, uid: str) -> None:
        self.nodes.add(uid)

    def add_edge(self, parent: str, child: str) -> None:
        self.nodes.add(parent)
        self.nodes.add(child)
        if child not in self.children[parent]:
            self.children[parent].append(child)
            self.parents[child].append(parent)

    def copy(self) -> "LineageGraph":
        g = LineageGraph()
        g.nodes = set(self.nodes)
        for k, v in self.parents.items():
            g.parents[k] = list(v)
        for k, v in self.children.items():
            g.children[k] = list(v)
        return g

    def topological_sort(self, subset: Optional[Iterable[str]] = None) -> List[str]:
        """Kahn's algorithm; ties broken by unique id so the order is stable."""
        members = set(self.nodes if subset is None else subset)
        in_degree: Dict[str, int] = {n: 0 for n in members}
        for n in members:
            for p in self.parents.get(n, []):
                if p in members:
                    in_degree[n] += 1

        ready = sorted(n for n, d in in_degree.items() if d == 0)
        queue = deque(ready)
        order: List[str] = []

        while queue:
            current = queue.popleft()
            order.append(current)
            released = []
            for child in self.children.get(current, []):
                if child not in members:
                    continue
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    released.append(child)
            queue.extend(sorted(released))

        if len(order) != len(members):
            raise CircularDependencyError(self.find_cycle(members - set(order)))
        return order

    def find_cycle(self, candidates: Iterable[str]) -> List[str]:
        cand = set(candidates)
        visiting: Set[str] = set()
        done: Set[str] = set()
        stack: List[str] = []

        def visit(n: str) -> Optional[List[str]]:
            visiting.add(n)
            stack.append(n)
            for child in sorted(self.children.get(n, [])):
                if child not in cand or child in done:
                    continue
                if child in visiting:
                    return stack[stack.index(child):] + [child]
                found = visit(child)
                if found:
                    return found
            visiting.discard(n)
            done.add(n)
            stack.pop()
            return None

        for start in sorted(cand):
            if start in done:
                continue
            found = visit(start)
            if found:
                return found
        return sorted(cand)

    def _walk(self, start: str, edges: Dict[str, List[str]], depth: Optional[int]) -> Set[str]:
        seen: Set[str] = set()
        frontier = [start]
        level = 0
        while frontier and (depth is None or level < depth):
            nxt = []
            for n in frontier:
                for m in edges.get(n, []):
                    if m not in seen:
                        seen.add(m)
                        nxt.append(m)
            frontier = nxt
            level += 1
        seen.discard(start)
        return seen

    def ancestors(self, uid: str, depth: Optional[int] = None) -> Set[str]:
        return self._walk(uid, self.parents, depth)

    def descendants(self, uid: str, depth: Optional[int] = None) -> Set[str]:
        return self._walk(uid, self.children, depth)

    def parent_map(self) -> Dict[str, List[str]]:
        return {n: sorted(self.parents.get(n, [])) for n in sorted(self.nodes)}

    def child_map(self) -> Dict[str, List[str]]:
        return {n: sorted(self.children.get(n, [])) for n in sorted(self.nodes)}

    def edges(self) -> List[Dict[str, str]]:
        out = []
        for parent in sorted(self.children):
            for child in sorted(self.children[parent]):
                out.append({"from": parent, "to": child})
        return out
