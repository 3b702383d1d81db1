from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from transform_copilot.cli import command_tree
from transform_copilot.core.guide.checker import DEFAULT_DUPLICATE_THRESHOLD, check_guides
from transform_copilot.core.observability.metrics import inc_named

router = APIRouter(prefix="/api/v1/guide", tags=["guide"])


class GuideCheckRequest(BaseModel):
    paths: List[str] = Field(min_length=1)
    root: Optional[str] = None
    duplicate_threshold: float = Field(default=DEFAULT_DUPLICATE_THRESHOLD, gt=0.0, le=1.0)


@router.post("/check")
def check(req: GuideCheckRequest):
    inc_named("api_guide_check")
    try:
        report = check_guides(
            [Path(p) for p in req.paths],
            known_commands=command_tree(),
            duplicate_threshold=req.duplicate_threshold,
            root=Path(req.root) if req.root else None,
        )
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return report.to_dict()
