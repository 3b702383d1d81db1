from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from transform_copilot.core.adapters.base import WarehouseAdapter
from transform_copilot.core.adapters.registry import create_adapter
from transform_copilot.core.compiler.compiler import Compiler
from transform_copilot.core.compiler.context import TargetProxy
from transform_copilot.core.errors import ProjectError
from transform_copilot.core.graph.lineage import LineageGraph
from transform_copilot.core.manifest.models import Manifest
from transform_copilot.core.manifest.parser import parse_project, resolve_vars
from transform_copilot.core.profiles.loader import load_profile
from transform_copilot.core.profiles.models import TargetConfig
from transform_copilot.core.project.loader import Project, load_project

_log = logging.getLogger("transform.session")


def parse_cli_vars(raw: Optional[str]) -> Dict[str, Any]:
    """``--vars`` accepts a YAML (or JSON) mapping."""
    if not raw:
        return {}
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ProjectError(f"--vars is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ProjectError("--vars must be a mapping, e.g. '{start_date: 2024-01-01}'")
    return data


@dataclass
class Session:
    project: Project
    target: TargetConfig
    manifest: Manifest
    graph: LineageGraph
    adapter: WarehouseAdapter
    vars: Dict[str, Any]
    dry_run: bool = False

    @property
    def target_dir(self) -> Path:
        return self.project.target_dir

    def compiler(self) -> Compiler:
        return Compiler(
            self.manifest,
            self.adapter,
            vars_=self.vars,
            target=TargetProxy.from_config(self.target),
        )

    def write_artifact(self, name: str, payload: Dict[str, Any]) -> Path:
        self.target_dir.mkdir(parents=True, exist_ok=True)
        path = self.target_dir / name
        path.write_text(json.dumps(payload, indent=2, sort_keys=True, default=str), encoding="utf-8")
        return path

    def close(self) -> None:
        self.adapter.close()

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def open_session(
    project_dir: Path,
    profiles_dir: Path,
    *,
    target: Optional[str] = None,
    cli_vars: Optional[Dict[str, Any]] = None,
    dry_run: bool = False,
    target_path: Optional[str] = None,
) -> Session:
    project = load_project(project_dir, target_path=target_path)
    profile_name = project.config.profile or project.name
    target_cfg = load_profile(profiles_dir, profile_name, target)
    manifest = parse_project(project, target_cfg, cli_vars=cli_vars)

    graph = LineageGraph.from_manifest(manifest)
    graph.topological_sort()

    adapter = create_adapter(target_cfg, dry_run=dry_run)
    adapter.open()
    _log.info(
        "session ready project=%s target=%s adapter=%s dry_run=%s",
        project.name,
        target_cfg.name,
        adapter.name,
        dry_run,
    )
    return Session(
        project=project,
        target=target_cfg,
        manifest=manifest,
        graph=graph,
        adapter=adapter,
        vars=resolve_vars(project.config.vars, project.name, cli_vars),
        dry_run=dry_run,
    )
