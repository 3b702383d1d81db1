"""
Task runner for run / seed / snapshot / test / build.

Selected nodes are executed in lineage order on a thread pool. A node whose
outcome is blocking (error, failing error-severity test, skipped) causes
every selected descendant to be skipped.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from transform_copilot.core.compiler.compiler import Compiler, write_compiled
from transform_copilot.core.errors import TransformError
from transform_copilot.core.graph.lineage import LineageGraph
from transform_copilot.core.graph.selector import select_nodes
from transform_copilot.core.manifest.models import Node
from transform_copilot.core.materializations.engine import Materializer
from transform_copilot.core.observability.metrics import observe_node
from transform_copilot.core.session import Session
from transform_copilot.core.testing.generic import failures_sql

from .models import NodeResult, NodeStatus, RunResult
from .seeds import read_seed
from .state_machine import BLOCKING, ensure_transition

log = logging.getLogger("transform.run")

RESOURCE_TYPES: Dict[str, Set[str]] = {
    "run": {"model"},
    "seed": {"seed"},
    "snapshot": {"snapshot"},
    "test": {"test"},
    "build": {"model", "seed", "snapshot", "test"},
}


def _json_log(event: str, **fields):
    # Structured log in a single line.
    msg = {"event": event, **fields}
    log.info("%s", msg)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def build_execution_graph(graph: LineageGraph, manifest, selected: Set[str]) -> LineageGraph:
    """
    For build: downstream nodes wait on the tests of their parents, unless
    that edge would close a cycle.
    """
    g = graph.copy()
    for uid in sorted(selected):
        node = manifest.get(uid)
        if node.resource_type != "test" or not node.test_metadata or not node.test_metadata.attached_node:
            continue
        attached = node.test_metadata.attached_node
        test_ancestors = graph.ancestors(uid)
        for child in graph.children.get(attached, []):
            if child == uid or child not in selected:
                continue
            if manifest.get(child).resource_type == "test":
                continue
            if child in test_ancestors:
                continue
            g.add_edge(uid, child)
    return g


class RunTask:
    def __init__(
        self,
        session: Session,
        command: str,
        *,
        select: Optional[List[str]] = None,
        exclude: Optional[List[str]] = None,
        threads: Optional[int] = None,
        full_refresh: bool = False,
    ):
        if command not in RESOURCE_TYPES:
            raise ValueError(f"Unknown command {command!r}")
        self.session = session
        self.command = command
        self.select = select
        self.exclude = exclude
        self.threads = max(1, threads or session.target.threads or 1)
        self.full_refresh = full_refresh
        self.compiler: Compiler = session.compiler()
        self.materializer = Materializer(session.adapter)

    # ------------------------------------------------------------------
    # scheduling
    # ------------------------------------------------------------------
    def selected(self) -> Set[str]:
        return select_nodes(
            self.session.manifest,
            self.session.graph,
            self.select,
            self.exclude,
            resource_types=RESOURCE_TYPES[self.command],
        )

    def execute(self) -> RunResult:
        started = time.time()
        manifest = self.session.manifest
        selected = self.selected()
        graph = self.session.graph
        if self.command == "build":
            graph = build_execution_graph(graph, manifest, selected)
        order = graph.topological_sort(selected)
        position = {uid: i for i, uid in enumerate(order)}

        results: Dict[str, NodeResult] = {
            uid: NodeResult(unique_id=uid, resource_type=manifest.get(uid).resource_type) for uid in order
        }
        remaining = {uid: sum(1 for p in graph.parents.get(uid, []) if p in selected) for uid in order}
        blocked_by: Dict[str, str] = {}
        ready: List[str] = [uid for uid in order if remaining[uid] == 0]

        _json_log("run_started", command=self.command, nodes=len(order), threads=self.threads)

        def finish(uid: str) -> None:
            res = results[uid]
            observe_node(res.resource_type, res.status.value, res.execution_time)
            _json_log(
                "node_finished",
                unique_id=uid,
                status=res.status.value,
                execution_time=round(res.execution_time, 3),
                message=res.message,
            )
            for child in graph.children.get(uid, []):
                if child not in remaining:
                    continue
                if res.status in BLOCKING and child not in blocked_by:
                    blocked_by[child] = uid
                remaining[child] -= 1
                if remaining[child] == 0:
                    ready.append(child)
            ready.sort(key=lambda u: position[u])

        with ThreadPoolExecutor(max_workers=self.threads, thread_name_prefix="transform") as pool:
            running: Dict[Future, str] = {}
            while ready or running:
                while ready and len(running) < self.threads:
                    uid = ready.pop(0)
                    if uid in blocked_by:
                        res = results[uid]
                        ensure_transition(res.status, NodeStatus.SKIPPED)
                        res.status = NodeStatus.SKIPPED
                        res.message = f"skipped because {blocked_by[uid]} did not succeed"
                        finish(uid)
                        continue
                    running[pool.submit(self._execute_node, manifest.get(uid), results[uid])] = uid
                if not running:
                    continue
                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for fut in done:
                    uid = running.pop(fut)
                    fut.result()
                    finish(uid)

        run = RunResult(
            command=self.command,
            results=[results[uid] for uid in order],
            elapsed_time=time.time() - started,
        )
        self.session.write_artifact("run_results.json", run.to_dict())
        _json_log("run_finished", command=self.command, success=run.success, counts=run.counts())
        return run

    # ------------------------------------------------------------------
    # per-node execution (worker threads)
    # ------------------------------------------------------------------
    def _execute_node(self, node: Node, result: NodeResult) -> None:
        ensure_transition(result.status, NodeStatus.RUNNING)
        result.status = NodeStatus.RUNNING
        result.started_at = _now_iso()
        t0 = time.time()
        try:
            if node.resource_type == "model":
                self._run_model(node, result)
            elif node.resource_type == "seed":
                self._run_seed(node, result)
            elif node.resource_type == "snapshot":
                self._run_snapshot(node, result)
            elif node.resource_type == "test":
                self._run_test(node, result)
            else:
                raise TransformError(f"Cannot execute resource type {node.resource_type}", node=node.unique_id)
        except TransformError as exc:
            result.status = NodeStatus.ERROR
            result.message = str(exc)
            log.error("node %s failed: %s", node.unique_id, exc)
        except Exception as exc:
            result.status = NodeStatus.ERROR
            result.message = f"{type(exc).__name__}: {exc}"
            log.exception("unexpected error in node %s", node.unique_id)
        finally:
            result.execution_time = time.time() - t0
            result.completed_at = _now_iso()

    def _set(self, result: NodeResult, status: NodeStatus, message: str) -> None:
        ensure_transition(result.status, status)
        result.status = status
        result.message = message

    def _write(self, node: Node, sql: str) -> None:
        write_compiled(self.session.target_dir, self.session.project.name, node, sql)

    def _hooks(self, node: Node, hooks: List[str]) -> List[str]:
        return [self.compiler.render(node, h)[0] for h in hooks]

    def _effective_full_refresh(self, node: Node) -> bool:
        if node.config.full_refresh is not None:
            return bool(node.config.full_refresh)
        return self.full_refresh

    def _run_model(self, node: Node, result: NodeResult) -> None:
        if node.is_ephemeral:
            compiled = self.compiler.compile(node)
            self._write(node, compiled.sql)
            result.compiled_sql = compiled.sql
            self._set(result, NodeStatus.SUCCESS, "EPHEMERAL")
            return

        is_incremental = (
            node.materialized == "incremental"
            and not self._effective_full_refresh(node)
            and self.session.adapter.get_relation_type(node.relation) == "table"
        )
        compiled = self.compiler.compile(node, is_incremental=is_incremental)
        self._write(node, compiled.sql)
        result.compiled_sql = compiled.sql

        out = self.materializer.materialize(
            node,
            compiled.sql,
            full_refresh=self._effective_full_refresh(node),
            hooks_sql=self._hooks(node, node.config.pre_hook),
            post_hooks_sql=self._hooks(node, node.config.post_hook),
        )
        result.rows_affected = out.rows_affected if out.rows_affected >= 0 else None
        self._set(result, NodeStatus.SUCCESS, out.message)

    def _run_seed(self, node: Node, result: NodeResult) -> None:
        adapter = self.session.adapter
        columns, rows = read_seed(self.session.project.root / node.path, node.config.extra("column_types"))
        typed = [(name, adapter.column_type(t)) for name, t in columns]
        out = self.materializer.seed(node, typed, rows)
        result.rows_affected = out.rows_affected
        self._set(result, NodeStatus.SUCCESS, out.message)

    def _run_snapshot(self, node: Node, result: NodeResult) -> None:
        compiled = self.compiler.compile(node)
        self._write(node, compiled.sql)
        result.compiled_sql = compiled.sql
        out = self.materializer.snapshot(
            node,
            compiled.sql,
            hooks_sql=self._hooks(node, node.config.pre_hook),
            post_hooks_sql=self._hooks(node, node.config.post_hook),
        )
        result.rows_affected = out.rows_affected if out.rows_affected >= 0 else None
        self._set(result, NodeStatus.SUCCESS, out.message)

    def _run_test(self, node: Node, result: NodeResult) -> None:
        compiled = self.compiler.compile(node)
        self._write(node, compiled.sql)
        result.compiled_sql = compiled.sql
        resp = self.session.adapter.execute(failures_sql(compiled.sql), fetch=True)
        failures = int(resp.rows[0][0] or 0) if resp.rows else 0
        result.failures = failures
        if failures == 0:
            self._set(result, NodeStatus.PASS, "PASS")
        elif node.severity == "warn":
            self._set(result, NodeStatus.WARN, f"WARN {failures}")
        else:
            self._set(result, NodeStatus.FAIL, f"FAIL {failures}")


def run_task(session: Session, command: str, **kwargs) -> RunResult:
    return RunTask(session, command, **kwargs).execute()
