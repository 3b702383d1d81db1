from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from transform_copilot.core.errors import ProjectError

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured = False


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_threads() -> Optional[int]:
    raw = _env("TRANSFORM_THREADS")
    if not raw:
        return None
    try:
        threads = int(raw)
    except ValueError:
        raise ProjectError(f"TRANSFORM_THREADS must be a positive integer, got {raw!r}") from None
    if threads < 1:
        raise ProjectError(f"TRANSFORM_THREADS must be a positive integer, got {raw!r}")
    return threads


@dataclass(frozen=True)
class Settings:
    profiles_dir: Path
    target: Optional[str]
    threads: Optional[int]
    log_level: str
    target_path: Optional[str]

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            profiles_dir=Path(_env("TRANSFORM_PROFILES_DIR", str(Path.home() / ".transform_copilot"))).expanduser(),
            target=_env("TRANSFORM_TARGET") or None,
            threads=_env_threads(),
            log_level=_env("TRANSFORM_LOG_LEVEL", "INFO").upper(),
            target_path=_env("TRANSFORM_TARGET_PATH") or None,
        )


def configure_logging(level: str = "INFO") -> None:
    """Install a single root handler; later calls only adjust the level."""
    global _configured
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    if not _configured:
        logging.basicConfig(level=lvl, format=_LOG_FORMAT)
        _configured = True
    logging.getLogger().setLevel(lvl)
