from __future__ import annotations

import tempfile
from pathlib import Path

from fastapi import APIRouter
from starlette.responses import JSONResponse

from transform_copilot.core.config import Settings
from transform_copilot.core.errors import TransformError
from transform_copilot.core.observability.metrics import inc_named

router = APIRouter()


@router.get("/health/live")
async def live():
    inc_named("health_live")
    return {"status": "ok"}


@router.get("/api/v1/health/ready")
def readiness():
    """
    Ready when the profiles directory is readable (if it exists) and the
    process can write temporary files for compiled SQL.
    """
    inc_named("health_ready")
    problems: list[str] = []

    try:
        settings = Settings.from_env()
    except TransformError as e:
        settings = None
        problems.append(f"invalid_settings:{e}")

    profiles_dir = settings.profiles_dir if settings else None
    if profiles_dir is not None and profiles_dir.exists() and not profiles_dir.is_dir():
        problems.append(f"profiles_dir_not_a_directory:{profiles_dir}")

    try:
        with tempfile.NamedTemporaryFile("w", encoding="utf-8", prefix="transform_ready_", delete=True) as f:
            f.write("ok")
    except OSError:
        problems.append("tmp_not_writable")

    if problems:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "problems": problems},
        )

    return {"status": "ready", "profiles_dir": str(Path(profiles_dir))}
