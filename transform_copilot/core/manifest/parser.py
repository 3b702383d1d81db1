"""
Project parsing: files on disk -> Manifest.

Every SQL file is rendered once with capturing ``ref``/``source``/``config``
so dependencies and in-file config are known before anything is compiled.
Config precedence (lowest first): project folder config, schema file
``config:``, in-file ``config()``.
"""
from __future__ import annotations

import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jinja2 import TemplateError
from pydantic import ValidationError

from transform_copilot.core.compiler.context import Capture, TargetProxy, capture_context, make_environment
from transform_copilot.core.errors import CompilationError, ProjectError
from transform_copilot.core.profiles.models import TargetConfig
from transform_copilot.core.project.loader import Project, merge_configs, resolve_folder_config
from transform_copilot.core.project.models import NodeConfig
from transform_copilot.core.schema.models import GenericTestDef, ModelDoc, SourceDef, SourceTable
from transform_copilot.core.schema.parser import ProjectSchema, parse_schema_files
from transform_copilot.core.testing.generic import GENERIC_TESTS

from .models import REFABLE, GenericTestMetadata, Manifest, Node, Relation

_log = logging.getLogger("transform.parser")

SNAPSHOT_BLOCK_RE = re.compile(
    r"{%-?\s*snapshot\s+(\w+)\s*-?%}(.*?){%-?\s*endsnapshot\s*-?%}",
    re.DOTALL,
)

_NON_WORD = re.compile(r"[^0-9a-zA-Z_]+")


def generate_schema_name(custom_schema: Optional[str], target_schema: str) -> str:
    if not custom_schema:
        return target_schema
    return f"{target_schema}_{custom_schema.strip()}"


def resolve_vars(project_vars: Dict[str, Any], project_name: str, cli_vars: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in (project_vars or {}).items():
        if k == project_name and isinstance(v, dict):
            continue
        out[k] = v
    scoped = (project_vars or {}).get(project_name)
    if isinstance(scoped, dict):
        out.update(scoped)
    out.update(cli_vars or {})
    return out


class ManifestParser:
    def __init__(self, project: Project, target: TargetConfig, *, cli_vars: Optional[Dict[str, Any]] = None):
        self.project = project
        self.target = target
        self.target_proxy = TargetProxy.from_config(target)
        self.vars = resolve_vars(project.config.vars, project.name, cli_vars)
        self.env = make_environment()
        self.manifest = Manifest(project_name=project.name)
        self._captures: Dict[str, Capture] = {}
        self._disabled: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # entrypoint
    # ------------------------------------------------------------------
    def parse(self) -> Manifest:
        schema = parse_schema_files(self.project.paths("model") + self.project.paths("seed") + self.project.paths("snapshot"))

        self._parse_models(schema)
        self._parse_seeds(schema)
        self._parse_snapshots(schema)
        self._parse_sources(schema)
        self._parse_generic_tests(schema)
        self._parse_singular_tests()
        self._resolve_dependencies()

        _log.info(
            "parsed project=%s nodes=%d sources=%d",
            self.project.name,
            len(self.manifest.nodes),
            len(self.manifest.sources),
        )
        return self.manifest

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _uid(self, kind: str, name: str) -> str:
        return f"{kind}.{self.project.name}.{name}"

    def _capture(self, text: str, node_name: str, path: str) -> Capture:
        capture = Capture()
        ctx = capture_context(node_name=node_name, vars_=self.vars, target=self.target_proxy, capture=capture)
        try:
            self.env.from_string(text).render(**ctx)
        except TemplateError as exc:
            raise CompilationError(f"Jinja error: {exc}", path=path) from exc
        return capture

    def _config(self, layers: List[Dict[str, Any]], path: str) -> NodeConfig:
        try:
            return NodeConfig(**merge_configs(*layers))
        except ValidationError as exc:
            raise ProjectError(f"Invalid config: {exc}", path=path) from exc

    def _relation(self, name: str, cfg: NodeConfig, *, schema_override: Optional[str] = None) -> Relation:
        schema = schema_override or generate_schema_name(cfg.schema_, self.target.schema_name)
        return Relation(
            database=cfg.database or self.target.database,
            schema=schema,
            identifier=cfg.alias or name,
        )

    def _register(self, node: Node, capture: Optional[Capture] = None) -> None:
        if not node.config.enabled:
            self._disabled[node.name] = node.unique_id
            _log.debug("skipping disabled node %s", node.unique_id)
            return
        if node.resource_type in REFABLE:
            existing = self.manifest.find_refable(node.name)
            if existing is not None:
                raise ProjectError(
                    f"Two resources are named '{node.name}': {existing.path} and {node.path}",
                    path=node.path,
                )
        if node.unique_id in self.manifest.nodes:
            raise ProjectError(f"Duplicate node '{node.unique_id}'", path=node.path)
        self.manifest.nodes[node.unique_id] = node
        if capture is not None:
            self._captures[node.unique_id] = capture

    def _rel_path(self, path: Path) -> str:
        return str(path.relative_to(self.project.root))

    @staticmethod
    def _iter_files(dirs: List[Path], pattern: str) -> List[Tuple[Path, Path]]:
        out: List[Tuple[Path, Path]] = []
        for d in dirs:
            if d.exists():
                out += [(d, p) for p in sorted(d.rglob(pattern))]
        return out

    def _apply_doc(self, node: Node, doc: Optional[ModelDoc]) -> None:
        if doc is None:
            return
        node.description = doc.description
        node.columns = doc.column_map()

    # ------------------------------------------------------------------
    # resources
    # ------------------------------------------------------------------
    def _parse_models(self, schema: ProjectSchema) -> None:
        seen = set()
        for base, path in self._iter_files(self.project.paths("model"), "*.sql"):
            name = path.stem
            rel_to_base = path.relative_to(base)
            fqn = [self.project.name, *rel_to_base.parent.parts, name]
            rel_path = self._rel_path(path)
            raw = path.read_text(encoding="utf-8")
            capture = self._capture(raw, name, rel_path)

            doc = schema.models.get(name)
            cfg = self._config(
                [
                    {"materialized": "view"},
                    resolve_folder_config(self.project.config.models, self.project.name, fqn[1:]),
                    doc.config if doc else {},
                    capture.config,
                ],
                rel_path,
            )
            if cfg.materialized not in ("table", "view", "incremental", "ephemeral"):
                raise ProjectError(f"Models cannot be materialized as '{cfg.materialized}'", path=rel_path)

            node = Node(
                unique_id=self._uid("model", name),
                resource_type="model",
                name=name,
                package=self.project.name,
                path=rel_path,
                fqn=fqn,
                raw_sql=raw,
                config=cfg,
                refs=list(capture.refs),
                sources=list(capture.sources),
                relation=self._relation(name, cfg),
            )
            self._apply_doc(node, doc)
            self._register(node, capture)
            seen.add(name)

        for name in sorted(set(schema.models) - seen):
            msg = f"model '{name}' is documented in a schema file but has no SQL file"
            self.manifest.warnings.append(msg)
            _log.warning(msg)

    def _parse_seeds(self, schema: ProjectSchema) -> None:
        for base, path in self._iter_files(self.project.paths("seed"), "*.csv"):
            name = path.stem
            fqn = [self.project.name, *path.relative_to(base).parent.parts, name]
            rel_path = self._rel_path(path)
            doc = schema.seeds.get(name)
            cfg = self._config(
                [
                    resolve_folder_config(self.project.config.seeds, self.project.name, fqn[1:]),
                    doc.config if doc else {},
                    {"materialized": "seed"},
                ],
                rel_path,
            )
            node = Node(
                unique_id=self._uid("seed", name),
                resource_type="seed",
                name=name,
                package=self.project.name,
                path=rel_path,
                fqn=fqn,
                config=cfg,
                relation=self._relation(name, cfg),
            )
            self._apply_doc(node, doc)
            self._register(node)

    def _parse_snapshots(self, schema: ProjectSchema) -> None:
        for base, path in self._iter_files(self.project.paths("snapshot"), "*.sql"):
            rel_path = self._rel_path(path)
            text = path.read_text(encoding="utf-8")
            blocks = SNAPSHOT_BLOCK_RE.findall(text)
            if not blocks:
                blocks = [(path.stem, text)]

            for name, body in blocks:
                fqn = [self.project.name, *path.relative_to(base).parent.parts, name]
                capture = self._capture(body, name, rel_path)
                doc = schema.snapshots.get(name)
                cfg = self._config(
                    [
                        resolve_folder_config(self.project.config.snapshots, self.project.name, fqn[1:]),
                        doc.config if doc else {},
                        capture.config,
                        {"materialized": "snapshot"},
                    ],
                    rel_path,
                )
                if not cfg.unique_keys():
                    raise ProjectError(f"Snapshot '{name}' requires a unique_key", path=rel_path)
                strategy = cfg.extra("strategy")
                if strategy not in ("timestamp", "check"):
                    raise ProjectError(
                        f"Snapshot '{name}' strategy must be 'timestamp' or 'check', got {strategy!r}",
                        path=rel_path,
                    )
                if strategy == "timestamp" and not cfg.extra("updated_at"):
                    raise ProjectError(f"Snapshot '{name}' with timestamp strategy requires updated_at", path=rel_path)
                if strategy == "check" and not cfg.extra("check_cols"):
                    raise ProjectError(f"Snapshot '{name}' with check strategy requires check_cols", path=rel_path)

                node = Node(
                    unique_id=self._uid("snapshot", name),
                    resource_type="snapshot",
                    name=name,
                    package=self.project.name,
                    path=rel_path,
                    fqn=fqn,
                    raw_sql=body.strip(),
                    config=cfg,
                    refs=list(capture.refs),
                    sources=list(capture.sources),
                    relation=self._relation(name, cfg, schema_override=cfg.extra("target_schema")),
                )
                self._apply_doc(node, doc)
                self._register(node, capture)

    def _parse_sources(self, schema: ProjectSchema) -> None:
        for src in schema.sources.values():
            for table in src.tables:
                uid = f"source.{self.project.name}.{src.name}.{table.name}"
                node = Node(
                    unique_id=uid,
                    resource_type="source",
                    name=table.name,
                    package=self.project.name,
                    path=f"sources/{src.name}",
                    fqn=[self.project.name, src.name, table.name],
                    description=table.description or src.description,
                    columns=table.column_map(),
                    relation=Relation(
                        database=src.database or self.target.database,
                        schema=src.schema_name,
                        identifier=table.identifier or table.name,
                    ),
                    source_name=src.name,
                    loaded_at_field=src.table_loaded_at(table),
                    freshness=src.table_freshness(table),
                )
                self.manifest.sources[uid] = node

    # ------------------------------------------------------------------
    # tests
    # ------------------------------------------------------------------
    def _test_node(
        self,
        test: GenericTestDef,
        *,
        attached: Node,
        label: str,
        column: Optional[str],
        path: str,
    ) -> None:
        if test.name not in GENERIC_TESTS:
            raise ProjectError(f"Unknown generic test '{test.name}' on {label}", path=path)

        kwargs = dict(test.kwargs)
        column_name = column or kwargs.get("column_name")
        parts = [test.name, label]
        if column_name:
            parts.append(str(column_name))
        if test.name == "relationships":
            parts.append(str(kwargs.get("field", "")))
        name = _NON_WORD.sub("_", "_".join(parts)).strip("_")
        if self._uid("test", name) in self.manifest.nodes:
            digest = hashlib.sha256(json.dumps(kwargs, sort_keys=True, default=str).encode("utf-8")).hexdigest()
            name = f"{name}_{digest[:10]}"

        capture = Capture()
        if test.name == "relationships" and kwargs.get("to"):
            expr = str(kwargs["to"])
            capture = self._capture(expr if "{{" in expr else "{{ " + expr + " }}", name, path)

        cfg = self._config([{"tags": attached.tags}, {"materialized": "test", "severity": test.severity}], path)
        node = Node(
            unique_id=self._uid("test", name),
            resource_type="test",
            name=name,
            package=self.project.name,
            path=path,
            fqn=[self.project.name, name],
            config=cfg,
            refs=list(capture.refs),
            sources=list(capture.sources),
            test_metadata=GenericTestMetadata(
                name=test.name,
                kwargs=kwargs,
                column_name=column_name,
                attached_node=attached.unique_id,
            ),
        )
        self._register(node, capture)

    def _attach_tests(self, owner: Any, attached: Node, label: str, path: str) -> None:
        for test in owner.tests:
            self._test_node(test, attached=attached, label=label, column=None, path=path)
        for col in owner.columns:
            for test in col.tests:
                self._test_node(test, attached=attached, label=label, column=col.name, path=path)

    def _parse_generic_tests(self, schema: ProjectSchema) -> None:
        for kind, bucket in (("model", schema.models), ("seed", schema.seeds), ("snapshot", schema.snapshots)):
            for name, doc in bucket.items():
                attached = self.manifest.nodes.get(self._uid(kind, name))
                if attached is None:
                    continue
                self._attach_tests(doc, attached, name, attached.path)

        for src in schema.sources.values():
            for table in src.tables:
                attached = self.manifest.sources[f"source.{self.project.name}.{src.name}.{table.name}"]
                self._attach_tests(table, attached, f"source_{src.name}_{table.name}", attached.path)

    def _parse_singular_tests(self) -> None:
        for base, path in self._iter_files(self.project.paths("test"), "*.sql"):
            name = path.stem
            rel_path = self._rel_path(path)
            raw = path.read_text(encoding="utf-8")
            capture = self._capture(raw, name, rel_path)
            cfg = self._config([capture.config, {"materialized": "test"}], rel_path)
            node = Node(
                unique_id=self._uid("test", name),
                resource_type="test",
                name=name,
                package=self.project.name,
                path=rel_path,
                fqn=[self.project.name, *path.relative_to(base).parent.parts, name],
                raw_sql=raw,
                config=cfg,
                refs=list(capture.refs),
                sources=list(capture.sources),
            )
            self._register(node, capture)

    # ------------------------------------------------------------------
    # dependencies
    # ------------------------------------------------------------------
    def _resolve_dependencies(self) -> None:
        for node in self.manifest.nodes.values():
            deps: List[str] = []
            if node.test_metadata and node.test_metadata.attached_node:
                deps.append(node.test_metadata.attached_node)

            for name in node.refs:
                target = self.manifest.find_refable(name)
                if target is None:
                    if name in self._disabled:
                        raise CompilationError(f"ref('{name}') points to a disabled node", node=node.unique_id)
                    raise CompilationError(f"ref('{name}') does not match any node", node=node.unique_id)
                if target.unique_id not in deps:
                    deps.append(target.unique_id)

            for source_name, table_name in node.sources:
                src = self.manifest.find_source(source_name, table_name)
                if src is None:
                    raise CompilationError(
                        f"source('{source_name}', '{table_name}') is not declared in any schema file",
                        node=node.unique_id,
                    )
                if src.unique_id not in deps:
                    deps.append(src.unique_id)

            node.depends_on = deps


def parse_project(project: Project, target: TargetConfig, *, cli_vars: Optional[Dict[str, Any]] = None) -> Manifest:
    return ManifestParser(project, target, cli_vars=cli_vars).parse()
