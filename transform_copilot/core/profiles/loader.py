"""
Connection profile loading.

``profiles.yml`` maps profile names to a default target and its outputs:

    warehouse:
      target: dev
      outputs:
        dev:
          type: snowflake
          account: "{{ env_var('SNOWFLAKE_ACCOUNT') }}"
          schema: analytics

String values are rendered through Jinja so secrets can be read from the
environment with ``env_var(name, default)``.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from jinja2 import Environment, StrictUndefined, TemplateError
from pydantic import ValidationError

from transform_copilot.core.errors import ProfileError

from .models import TargetConfig

_log = logging.getLogger("transform.profiles")

PROFILES_FILE = "profiles.yml"

_MISSING = object()


def env_var(name: str, default: Any = _MISSING) -> str:
    value = os.environ.get(name)
    if value is not None:
        return value
    if default is not _MISSING:
        return default
    raise ProfileError(f"Environment variable '{name}' is required but not set")


def _render(value: Any, env: Environment) -> Any:
    if isinstance(value, str):
        if "{{" not in value and "{%" not in value:
            return value
        try:
            return env.from_string(value).render()
        except TemplateError as exc:
            raise ProfileError(f"Cannot render profile value {value!r}: {exc}") from exc
    if isinstance(value, dict):
        return {k: _render(v, env) for k, v in value.items()}
    if isinstance(value, list):
        return [_render(v, env) for v in value]
    return value


def load_profile(profiles_dir: Path, profile_name: str, target: Optional[str] = None) -> TargetConfig:
    path = Path(profiles_dir) / PROFILES_FILE
    if not path.exists():
        raise ProfileError(f"{PROFILES_FILE} not found", path=str(profiles_dir))

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ProfileError(f"Invalid YAML: {exc}", path=str(path)) from exc

    profile = raw.get(profile_name) if isinstance(raw, dict) else None
    if not isinstance(profile, dict):
        raise ProfileError(f"Profile '{profile_name}' not found", path=str(path))

    env = Environment(undefined=StrictUndefined)
    env.globals["env_var"] = env_var

    target_name = target or _render(profile.get("target"), env)
    if not target_name:
        raise ProfileError(f"Profile '{profile_name}' has no default target", path=str(path))

    outputs = profile.get("outputs") or {}
    output = outputs.get(target_name)
    if not isinstance(output, dict):
        raise ProfileError(
            f"Target '{target_name}' not found in profile '{profile_name}' "
            f"(available: {', '.join(sorted(outputs)) or 'none'})",
            path=str(path),
        )

    rendered = _render(output, env)
    if "threads" in rendered:
        try:
            rendered["threads"] = int(rendered["threads"])
        except (TypeError, ValueError) as exc:
            raise ProfileError(f"threads must be an integer, got {rendered['threads']!r}") from exc

    try:
        cfg = TargetConfig(name=target_name, **rendered)
    except ValidationError as exc:
        raise ProfileError(f"Invalid target '{target_name}': {exc}", path=str(path)) from exc

    _log.info("using profile=%s target=%s type=%s", profile_name, target_name, cfg.type)
    return cfg
