"""
Project configuration loading.

A project directory holds ``transform_project.yml``:

    name: jaffle_shop
    profile: warehouse
    models:
      jaffle_shop:
        +materialized: view
        marts:
          +materialized: table
          +schema: marts

Folder configs are resolved by walking the nested ``models:`` mapping along
a node's folder path; deeper folders override shallower ones.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml
from pydantic import ValidationError

from transform_copilot.core.errors import ProjectError
from transform_copilot.core.project.models import KNOWN_CONFIG_KEYS, ProjectConfig

_log = logging.getLogger("transform.project")

PROJECT_FILE = "transform_project.yml"


@dataclass(frozen=True)
class Project:
    root: Path
    config: ProjectConfig

    @property
    def name(self) -> str:
        return self.config.name

    def paths(self, kind: str) -> List[Path]:
        rel = {
            "model": self.config.model_paths,
            "seed": self.config.seed_paths,
            "snapshot": self.config.snapshot_paths,
            "test": self.config.test_paths,
        }[kind]
        return [self.root / p for p in rel]

    @property
    def target_dir(self) -> Path:
        return self.root / self.config.target_path


def read_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ProjectError(f"Invalid YAML: {exc}", path=str(path)) from exc
    except OSError as exc:
        raise ProjectError(f"Cannot read file: {exc}", path=str(path)) from exc


def load_project(project_dir: Path, *, target_path: Optional[str] = None) -> Project:
    root = Path(project_dir).resolve()
    cfg_path = root / PROJECT_FILE
    if not cfg_path.exists():
        raise ProjectError(f"{PROJECT_FILE} not found", path=str(root))

    raw = read_yaml(cfg_path) or {}
    if not isinstance(raw, dict):
        raise ProjectError(f"{PROJECT_FILE} must be a mapping", path=str(cfg_path))

    try:
        cfg = ProjectConfig(**raw)
    except ValidationError as exc:
        raise ProjectError(f"Invalid project configuration: {exc}", path=str(cfg_path)) from exc

    if target_path:
        cfg = cfg.model_copy(update={"target_path": target_path})

    _log.debug("loaded project name=%s root=%s", cfg.name, root)
    return Project(root=root, config=cfg)


def normalize_config_key(key: str) -> Optional[str]:
    """Return the canonical config key, or None when ``key`` names a folder."""
    k = str(key)
    explicit = k.startswith("+")
    k = k.lstrip("+").replace("-", "_")
    if explicit or k in KNOWN_CONFIG_KEYS:
        return k
    return None


def _level_config(level: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in level.items():
        ck = normalize_config_key(key)
        if ck is not None:
            out[ck] = value
    return out


def resolve_folder_config(tree: Dict[str, Any], project_name: str, fqn: Iterable[str]) -> Dict[str, Any]:
    """
    Collect config for a node whose fully-qualified name is ``fqn``
    (folder parts followed by the node name).
    """
    level = tree.get(project_name) if isinstance(tree, dict) else None
    if not isinstance(level, dict):
        return {}

    layers = [_level_config(level)]
    for part in fqn:
        nxt = level.get(part)
        if not isinstance(nxt, dict):
            break
        level = nxt
        layers.append(_level_config(level))
    return merge_configs(*layers)


def merge_configs(*layers: Dict[str, Any]) -> Dict[str, Any]:
    """Later layers win; tags are unioned and hooks accumulate."""
    out: Dict[str, Any] = {}
    for layer in layers:
        for raw_key, value in (layer or {}).items():
            key = str(raw_key).lstrip("+").replace("-", "_")
            if key == "tags":
                existing = out.get("tags") or []
                incoming = [value] if isinstance(value, str) else list(value or [])
                out["tags"] = existing + [t for t in incoming if t not in existing]
            elif key in ("pre_hook", "post_hook"):
                incoming = [value] if isinstance(value, str) else list(value or [])
                out[key] = (out.get(key) or []) + incoming
            else:
                out[key] = value
    return out
