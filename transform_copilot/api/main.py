from __future__ import annotations

from fastapi import FastAPI

from transform_copilot import __version__
from transform_copilot.api.endpoints import guide, health, projects
from transform_copilot.api.endpoints import metrics as metrics_ep
from transform_copilot.api.middleware.error_shaping import SafeErrorMiddleware
from transform_copilot.api.middleware.request_context import RequestContextMiddleware

app = FastAPI(
    title="Transform Copilot API",
    version=__version__,
)

# ------------------------------------------------------------
# Middleware stack (ORDER MATTERS)
# Starlette reverses add_middleware order: the LAST call is the OUTERMOST wrapper.
#   SafeErrorMiddleware -> RequestContext -> handler
# ------------------------------------------------------------
app.add_middleware(RequestContextMiddleware)
app.add_middleware(SafeErrorMiddleware)

app.include_router(health.router)
app.include_router(metrics_ep.router)
app.include_router(projects.router)
app.include_router(guide.router)
