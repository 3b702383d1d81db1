from .base import AdapterResponse, WarehouseAdapter
from .dry_run import DryRunAdapter
from .registry import create_adapter
from .sqlite import SqliteAdapter

__all__ = [
    "AdapterResponse",
    "WarehouseAdapter",
    "DryRunAdapter",
    "SqliteAdapter",
    "create_adapter",
]
