from __future__ import annotations

from typing import Optional


class TransformError(Exception):
    """Base class for every error the tool raises on purpose."""

    exit_code = 2

    def __init__(self, message: str, *, path: Optional[str] = None, node: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path
        self.node = node

    def __str__(self) -> str:
        where = self.node or self.path
        if where:
            return f"{self.message} ({where})"
        return self.message


class ProjectError(TransformError):
    pass


class ProfileError(TransformError):
    pass


class CompilationError(TransformError):
    pass


class CircularDependencyError(TransformError):
    def __init__(self, cycle):
        self.cycle = list(cycle)
        super().__init__("Circular dependency detected: " + " -> ".join(self.cycle))


class SelectionError(TransformError):
    pass


class AdapterError(TransformError):
    pass


class DatabaseError(AdapterError):
    exit_code = 1
