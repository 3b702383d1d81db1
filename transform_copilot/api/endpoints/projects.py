from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from transform_copilot.core.config import Settings
from transform_copilot.core.errors import TransformError
from transform_copilot.core.graph.selector import select_nodes
from transform_copilot.core.observability.metrics import inc_named
from transform_copilot.core.session import Session, open_session

router = APIRouter(prefix="/api/v1/projects", tags=["projects"])


class ProjectRequest(BaseModel):
    project_dir: str
    profiles_dir: Optional[str] = None
    target: Optional[str] = None
    vars: Dict[str, Any] = Field(default_factory=dict)

    # The API never writes to the warehouse; relations render in the
    # target's dialect without a connection unless this is switched off.
    dry_run: bool = True


class LineageRequest(ProjectRequest):
    select: Optional[List[str]] = None
    exclude: Optional[List[str]] = None


class CompileRequest(ProjectRequest):
    node: str


@contextmanager
def _session(req: ProjectRequest) -> Iterator[Session]:
    project_dir = Path(req.project_dir)
    if not project_dir.is_dir():
        raise HTTPException(status_code=404, detail=f"project directory not found: {req.project_dir}")
    settings = Settings.from_env()
    try:
        session = open_session(
            project_dir,
            Path(req.profiles_dir) if req.profiles_dir else settings.profiles_dir,
            target=req.target or settings.target,
            cli_vars=req.vars,
            dry_run=req.dry_run,
        )
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransformError as e:
        raise HTTPException(status_code=400, detail=str(e))
    try:
        yield session
    finally:
        session.close()


def _summary(node) -> Dict[str, Any]:
    return {
        "unique_id": node.unique_id,
        "name": node.name,
        "resource_type": node.resource_type,
        "path": node.path,
        "materialized": node.materialized if node.resource_type != "source" else None,
        "tags": node.tags,
        "depends_on": list(node.depends_on),
        "relation": node.relation.to_dict() if node.relation else None,
    }


@router.post("/parse")
def parse_project(req: ProjectRequest):
    inc_named("api_projects_parse")
    with _session(req) as session:
        manifest = session.manifest
        counts: Dict[str, int] = {}
        for node in manifest.all_nodes().values():
            counts[node.resource_type] = counts.get(node.resource_type, 0) + 1
        return {
            "project": manifest.project_name,
            "target": session.target.name,
            "counts": counts,
            "nodes": [_summary(manifest.get(uid)) for uid in session.graph.topological_sort()],
            "warnings": list(manifest.warnings),
        }


@router.post("/lineage")
def project_lineage(req: LineageRequest):
    inc_named("api_projects_lineage")
    with _session(req) as session:
        graph = session.graph
        try:
            if req.select or req.exclude:
                members = select_nodes(session.manifest, graph, req.select, req.exclude)
                if not req.select:
                    members |= set(session.manifest.sources) - select_nodes(
                        session.manifest, graph, req.exclude
                    )
            else:
                members = set(graph.nodes)
        except TransformError as e:
            raise HTTPException(status_code=400, detail=str(e))

        order = graph.topological_sort(members)
        return {
            "nodes": [_summary(session.manifest.get(uid)) for uid in order],
            "edges": [e for e in graph.edges() if e["from"] in members and e["to"] in members],
            "order": order,
        }


@router.post("/compile")
def compile_node(req: CompileRequest):
    inc_named("api_projects_compile")
    with _session(req) as session:
        manifest = session.manifest
        node = manifest.nodes.get(req.node) or manifest.find_refable(req.node)
        if node is None:
            matches = [n for n in manifest.nodes.values() if n.name == req.node]
            node = matches[0] if len(matches) == 1 else None
        if node is None:
            raise HTTPException(status_code=404, detail=f"node not found: {req.node}")
        if node.resource_type == "seed":
            raise HTTPException(status_code=400, detail="seeds have no SQL to compile")
        try:
            compiled = session.compiler().compile(node)
        except TransformError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {
            "unique_id": node.unique_id,
            "compiled_sql": compiled.sql,
            "ephemerals": compiled.ephemerals,
            "adapter": session.adapter.name,
        }
