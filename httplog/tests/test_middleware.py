# httplog/tests/test_middleware.py
import logging

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from pydantic import BaseModel

from httplog.config import LoggingProperties
from httplog.correlation import current_context, get_request_id
from httplog.middleware import install_http_logging


class Login(BaseModel):
    user: str
    password: str


def _client(**overrides) -> TestClient:
    settings = {"sensitive_keys": ("password", "token")}
    settings.update(overrides)
    props = LoggingProperties(**settings)
    app = FastAPI()

    @app.post("/login")
    async def login(body: Login):
        return {"user": body.user, "token": "t0ps3cret"}

    @app.get("/rid")
    async def rid(request: Request):
        return {"state": request.state.requestId, "ambient": get_request_id()}

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/upload")
    async def upload(request: Request):
        data = await request.body()
        return {"size": len(data)}

    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    install_http_logging(app, properties=props)
    return TestClient(app)


def _http_records(caplog):
    return [r.getMessage() for r in caplog.records if r.name == "httplog.http"]


def test_inbound_id_round_trip(caplog):
    caplog.set_level(logging.INFO, logger="httplog")
    r = _client().get("/rid", headers={"X-Request-Id": "abc123"})
    assert r.status_code == 200
    assert r.headers["x-request-id"] == "abc123"
    assert r.json() == {"state": "abc123", "ambient": "abc123"}
    records = _http_records(caplog)
    assert len(records) == 1
    assert "[RequestId: abc123]" in records[0]
    assert "<- Response: 200" in records[0]
    assert current_context() is None


def test_fresh_ids_are_unique():
    client = _client()
    a = client.get("/rid").headers["x-request-id"]
    b = client.get("/rid").headers["x-request-id"]
    assert a and b and a != b
    assert len(a) == 32


def test_json_bodies_masked(caplog):
    caplog.set_level(logging.INFO, logger="httplog")
    r = _client().post("/login", json={"user": "alice", "password": "hunter2"})
    assert r.json() == {"user": "alice", "token": "t0ps3cret"}
    text = _http_records(caplog)[0]
    assert "hunter2" not in text
    assert "t0ps3cret" not in text
    assert '"user": "alice"' in text
    assert '"password": "****"' in text


def test_multipart_payload_never_logged(caplog):
    caplog.set_level(logging.INFO, logger="httplog")
    r = _client(mask_sensitive=False).post("/upload", files={"doc": ("a.txt", b"secret-bytes", "text/plain")})
    assert r.status_code == 200
    assert r.json()["size"] > len(b"secret-bytes")
    text = _http_records(caplog)[0]
    assert "[multipart] (files/parts omitted)" in text
    assert "secret-bytes" not in text


def test_excluded_path_not_logged(caplog):
    caplog.set_level(logging.INFO, logger="httplog")
    r = _client(excluded_paths=("/health",)).get("/health")
    assert r.json() == {"status": "ok"}
    assert r.headers["x-request-id"]
    assert _http_records(caplog) == []


def test_query_logged(caplog):
    caplog.set_level(logging.INFO, logger="httplog")
    _client().get("/rid?tag=a&tag=b&token=x")
    text = _http_records(caplog)[0]
    assert "- tag: [a, b]" in text
    assert "- token: ****" in text


def test_oneline_mode(caplog):
    caplog.set_level(logging.INFO, logger="httplog")
    _client(multiline=False).get("/rid", headers={"X-Request-Id": "abc123"})
    text = _http_records(caplog)[0]
    assert "\n" not in text
    assert text.startswith("[HTTP] requestId=abc123 method=GET path=/rid")


def test_error_logged_and_reraised(caplog):
    caplog.set_level(logging.INFO, logger="httplog")
    with pytest.raises(RuntimeError, match="kaboom"):
        _client().get("/boom", headers={"X-Request-Id": "err-1"})
    text = _http_records(caplog)[0]
    assert "[RequestId: err-1]" in text
    assert "<- Error: 500" in text
    assert "RuntimeError" in text
    assert "Message: kaboom" in text
    assert current_context() is None


def test_error_500_keeps_request_id(caplog):
    caplog.set_level(logging.INFO, logger="httplog")
    client = TestClient(_client().app, raise_server_exceptions=False)
    r = client.get("/boom", headers={"X-Request-Id": "abc123"})
    assert r.status_code == 500
    assert r.headers["x-request-id"] == "abc123"
    assert "[RequestId: abc123]" in _http_records(caplog)[0]
    assert current_context() is None


def test_error_500_gets_fresh_id():
    client = TestClient(_client().app, raise_server_exceptions=False)
    r = client.get("/boom")
    assert r.status_code == 500
    assert len(r.headers["x-request-id"]) == 32


def test_disabled_still_correlates(caplog):
    caplog.set_level(logging.INFO, logger="httplog")
    r = _client(enabled=False).get("/rid", headers={"X-Request-Id": "abc123"})
    assert r.status_code == 200
    assert r.headers["x-request-id"] == "abc123"
    assert r.json() == {"state": "abc123", "ambient": "abc123"}
    assert _http_records(caplog) == []
