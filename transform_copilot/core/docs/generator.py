from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from transform_copilot import __version__
from transform_copilot.core.compiler.compiler import write_compiled
from transform_copilot.core.manifest.models import Manifest
from transform_copilot.core.graph.lineage import LineageGraph
from transform_copilot.core.session import Session

_log = logging.getLogger("transform.docs")


def build_manifest_payload(
    manifest: Manifest,
    graph: LineageGraph,
    *,
    compiled: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    compiled = compiled or {}
    nodes = {}
    for uid, node in sorted(manifest.nodes.items()):
        d = node.to_dict()
        if uid in compiled:
            d["compiled_code"] = compiled[uid]
        nodes[uid] = d
    return {
        "metadata": {
            "project_name": manifest.project_name,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "generator_version": __version__,
        },
        "nodes": nodes,
        "sources": {uid: n.to_dict() for uid, n in sorted(manifest.sources.items())},
        "parent_map": graph.parent_map(),
        "child_map": graph.child_map(),
        "warnings": list(manifest.warnings),
    }


def build_catalog_payload(session: Session) -> Dict[str, Any]:
    adapter = session.adapter
    out: Dict[str, Any] = {"nodes": {}, "sources": {}}
    for bucket, nodes in (("nodes", session.manifest.nodes), ("sources", session.manifest.sources)):
        for uid, node in sorted(nodes.items()):
            if node.relation is None or node.is_ephemeral:
                continue
            kind = adapter.get_relation_type(node.relation)
            if kind is None:
                continue
            columns = adapter.get_columns(node.relation)
            out[bucket][uid] = {
                "unique_id": uid,
                "metadata": {
                    "type": kind,
                    "schema": node.relation.schema,
                    "name": node.relation.identifier,
                    "database": node.relation.database,
                },
                "columns": {
                    name: {
                        "name": name,
                        "type": dtype,
                        "index": i + 1,
                        "comment": node.columns[name].description if name in node.columns else None,
                    }
                    for i, (name, dtype) in enumerate(columns)
                },
            }
    out["metadata"] = {"generated_at": datetime.now(timezone.utc).isoformat()}
    return out


def generate_docs(session: Session) -> Dict[str, str]:
    """Compile every node and write manifest.json and catalog.json."""
    compiler = session.compiler()
    compiled: Dict[str, str] = {}
    for uid in session.graph.topological_sort(session.manifest.nodes):
        node = session.manifest.nodes[uid]
        if node.resource_type == "seed":
            continue
        sql = compiler.compile(node).sql
        compiled[uid] = sql
        write_compiled(session.target_dir, session.project.name, node, sql)

    manifest_path = session.write_artifact("manifest.json", build_manifest_payload(session.manifest, session.graph, compiled=compiled))
    catalog_path = session.write_artifact("catalog.json", build_catalog_payload(session))
    _log.info("wrote %s and %s", manifest_path, catalog_path)
    return {"manifest": str(manifest_path), "catalog": str(catalog_path)}
