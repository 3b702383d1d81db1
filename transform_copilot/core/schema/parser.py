from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List

from pydantic import ValidationError

from transform_copilot.core.errors import ProjectError
from transform_copilot.core.project.loader import read_yaml

from .models import ModelDoc, SchemaFile, SourceDef

_log = logging.getLogger("transform.schema")


@dataclass
class ProjectSchema:
    models: Dict[str, ModelDoc] = field(default_factory=dict)
    seeds: Dict[str, ModelDoc] = field(default_factory=dict)
    snapshots: Dict[str, ModelDoc] = field(default_factory=dict)
    sources: Dict[str, SourceDef] = field(default_factory=dict)
    files: List[str] = field(default_factory=list)


def iter_schema_files(dirs: Iterable[Path]) -> List[Path]:
    out: List[Path] = []
    for d in dirs:
        if not d.exists():
            continue
        out += sorted(p for p in d.rglob("*.yml"))
        out += sorted(p for p in d.rglob("*.yaml"))
    return out


def _add_docs(bucket: Dict[str, ModelDoc], docs: List[ModelDoc], kind: str, path: Path) -> None:
    for doc in docs:
        if doc.name in bucket:
            raise ProjectError(f"{kind} '{doc.name}' is documented more than once", path=str(path))
        bucket[doc.name] = doc


def parse_schema_files(dirs: Iterable[Path]) -> ProjectSchema:
    schema = ProjectSchema()
    for path in iter_schema_files(dirs):
        raw = read_yaml(path)
        if raw is None:
            continue
        if not isinstance(raw, dict):
            raise ProjectError("Schema file must be a mapping", path=str(path))
        try:
            parsed = SchemaFile(**raw)
        except (ValidationError, ValueError) as exc:
            raise ProjectError(f"Invalid schema file: {exc}", path=str(path)) from exc

        _add_docs(schema.models, parsed.models, "model", path)
        _add_docs(schema.seeds, parsed.seeds, "seed", path)
        _add_docs(schema.snapshots, parsed.snapshots, "snapshot", path)
        for src in parsed.sources:
            if src.name in schema.sources:
                raise ProjectError(f"source '{src.name}' is declared more than once", path=str(path))
            schema.sources[src.name] = src
        schema.files.append(str(path))

    _log.debug(
        "parsed %d schema files: models=%d sources=%d",
        len(schema.files),
        len(schema.models),
        len(schema.sources),
    )
    return schema
