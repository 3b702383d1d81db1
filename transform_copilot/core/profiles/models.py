from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TargetConfig(BaseModel):
    """One output of a profile: where and how to connect."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    # Checked against the adapter registry when a connection is opened.
    type: str
    schema_: str = Field(alias="schema")
    database: Optional[str] = None
    threads: int = 1

    @field_validator("type")
    @classmethod
    def _normalize_type(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def schema_name(self) -> str:
        return self.schema_

    def credentials(self) -> Dict[str, Any]:
        """Adapter-specific keys (path, account, user, ...), secrets included."""
        return dict(self.model_extra or {})

    def describe(self) -> Dict[str, Any]:
        safe = {k: v for k, v in self.credentials().items() if k not in _SECRET_KEYS}
        return {
            "name": self.name,
            "type": self.type,
            "schema": self.schema_,
            "database": self.database,
            "threads": self.threads,
            **safe,
        }


_SECRET_KEYS = {"password", "token", "private_key", "private_key_passphrase", "keyfile_json"}
