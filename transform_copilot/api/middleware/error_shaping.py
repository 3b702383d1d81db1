from __future__ import annotations

import logging
import traceback
from typing import Any, Callable, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from transform_copilot.core.errors import DatabaseError, TransformError
from transform_copilot.core.observability.metrics import inc_named

log = logging.getLogger("transform.errors")


def _shape(status: int, payload: Dict[str, Any], rid: Optional[str]) -> JSONResponse:
    if rid:
        payload["request_id"] = rid
    resp = JSONResponse(status_code=status, content=payload)
    if rid:
        resp.headers["X-Request-Id"] = rid
    return resp


class SafeErrorMiddleware(BaseHTTPMiddleware):
    """
    Last line of defence for the API.

    - Project errors that escape a router become 400 with the error class
      and the node or file they point at
    - Warehouse failures become 502; the SQL and driver message stay in
      the server log
    - Anything else is a 500 without a stack trace
    - request_id is echoed in the body and the X-Request-Id header
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except DatabaseError as e:
            rid = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
            inc_named("api_errors_warehouse")
            log.error("Warehouse error: %s rid=%s node=%s path=%s", e, rid, e.node, request.url.path)
            return _shape(502, {"detail": "Warehouse query failed", "error": type(e).__name__}, rid)
        except TransformError as e:
            rid = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
            inc_named("api_errors_project")
            log.warning(
                "%s",
                {
                    "event": "project_error",
                    "request_id": rid,
                    "error": type(e).__name__,
                    "node": e.node,
                    "file": e.path,
                    "path": request.url.path,
                },
            )
            payload: Dict[str, Any] = {"detail": e.message, "error": type(e).__name__}
            if e.node:
                payload["node"] = e.node
            if e.path:
                payload["file"] = e.path
            return _shape(400, payload, rid)
        except Exception as e:
            rid = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
            inc_named("api_errors_internal")
            log.error(
                "Unhandled error: %s rid=%s path=%s\n%s",
                str(e),
                rid,
                request.url.path,
                traceback.format_exc(),
            )
            return _shape(500, {"detail": "Internal Server Error"}, rid)
