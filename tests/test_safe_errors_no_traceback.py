from fastapi import FastAPI
from fastapi.testclient import TestClient

from transform_copilot.api.main import app
from transform_copilot.api.middleware.error_shaping import SafeErrorMiddleware
from transform_copilot.api.middleware.request_context import RequestContextMiddleware
from transform_copilot.core.errors import CompilationError, DatabaseError
from transform_copilot.core.observability.metrics import snapshot_named


def _exploding_app() -> FastAPI:
    a = FastAPI()
    a.add_middleware(RequestContextMiddleware)
    a.add_middleware(SafeErrorMiddleware)

    @a.get("/boom")
    def boom():
        raise RuntimeError("secret internals")

    @a.get("/bad-ref")
    def bad_ref():
        raise CompilationError("ref('nope') was not found", node="model.shop.orders")

    @a.get("/warehouse")
    def warehouse():
        raise DatabaseError("near \"selec\": syntax error in select * from secret_table")

    return a


def test_unknown_route_does_not_leak():
    c = TestClient(app)
    r = c.get("/api/v1/does/not/exist")
    assert r.status_code == 404
    assert "Traceback" not in r.text


def test_unhandled_error_is_shaped():
    c = TestClient(_exploding_app(), raise_server_exceptions=False)
    r = c.get("/boom", headers={"X-Request-Id": "rid-boom"})

    assert r.status_code == 500
    assert r.json() == {"detail": "Internal Server Error", "request_id": "rid-boom"}
    assert r.headers["X-Request-Id"] == "rid-boom"
    assert "secret internals" not in r.text
    assert "File \"" not in r.text


def test_project_error_keeps_node_context():
    c = TestClient(_exploding_app(), raise_server_exceptions=False)
    r = c.get("/bad-ref", headers={"X-Request-Id": "rid-ref"})

    assert r.status_code == 400
    assert r.json() == {
        "detail": "ref('nope') was not found",
        "error": "CompilationError",
        "node": "model.shop.orders",
        "request_id": "rid-ref",
    }
    assert snapshot_named()["api_errors_project"] == 1


def test_warehouse_error_hides_sql():
    c = TestClient(_exploding_app(), raise_server_exceptions=False)
    r = c.get("/warehouse", headers={"X-Request-Id": "rid-wh"})

    assert r.status_code == 502
    assert r.json()["detail"] == "Warehouse query failed"
    assert r.json()["error"] == "DatabaseError"
    assert "secret_table" not in r.text
    assert r.json()["request_id"] == "rid-wh"
    assert r.headers["X-Request-Id"] == "rid-wh"
