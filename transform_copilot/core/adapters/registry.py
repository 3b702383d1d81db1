from __future__ import annotations

from transform_copilot.core.errors import AdapterError
from transform_copilot.core.profiles.models import TargetConfig

from .base import WarehouseAdapter
from .dry_run import DryRunAdapter, known_dialects
from .sqlite import SqliteAdapter


def create_adapter(target: TargetConfig, *, dry_run: bool = False) -> WarehouseAdapter:
    if target.type == "sqlite" and not dry_run:
        creds = target.credentials()
        return SqliteAdapter(path=str(creds.get("path") or creds.get("database_path") or ":memory:"))

    if target.type in known_dialects():
        if dry_run:
            return DryRunAdapter(target.type)
        raise AdapterError(
            f"No database driver is bundled for '{target.type}'; re-run with --dry-run to render SQL only"
        )

    if target.type == "sqlite":
        # sqlite has no dry-run dialect of its own; reuse the ANSI quoting.
        return DryRunAdapter("postgres")

    raise AdapterError(f"Unknown warehouse type '{target.type}'")
