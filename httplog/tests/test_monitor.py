# httplog/tests/test_monitor.py
import asyncio
import inspect
import logging

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from httplog.config import LoggingProperties
from httplog.correlation import current_context
from httplog.middleware import install_http_logging
from httplog.monitor import MonitorSpec, log_monitoring, monitor_spec

PROPS = LoggingProperties(sensitive_keys=("password",))


class NotFoundError(Exception):
    pass


class Login(BaseModel):
    user: str
    password: str


def _method_records(caplog):
    return [r.getMessage() for r in caplog.records if r.name == "httplog.method"]


@log_monitoring(properties=PROPS)
def add(a: int, b: int = 1) -> int:
    return a + b


def test_sync_result_logged(caplog):
    caplog.set_level(logging.INFO, logger="httplog")
    assert add(2, b=3) == 5
    text = _method_records(caplog)[0]
    assert "[METHOD LOGGING START] [RequestId: " in text
    assert "add Args:" in text
    assert '"a": 2' in text
    assert "add Result (" in text
    assert current_context() is None


def test_signature_and_marker_preserved():
    assert list(inspect.signature(add).parameters) == ["a", "b"]
    assert add.__name__ == "add"
    assert monitor_spec(add) == MonitorSpec()


def test_error_reraised_unchanged(caplog):
    caplog.set_level(logging.INFO, logger="httplog")
    err = NotFoundError("missing id=42")

    @log_monitoring(properties=PROPS)
    def find(item_id):
        raise err

    with pytest.raises(NotFoundError) as info:
        find(42)
    assert info.value is err
    text = _method_records(caplog)[0]
    assert "find ERROR (" in text
    assert "NotFoundError" in text
    assert "Message: missing id=42" in text


def test_async_callable(caplog):
    caplog.set_level(logging.INFO, logger="httplog")

    @log_monitoring(properties=PROPS, log_result=False)
    async def slow(x):
        await asyncio.sleep(0)
        return x * 2

    assert inspect.iscoroutinefunction(slow)
    assert asyncio.run(slow(4)) == 8
    text = _method_records(caplog)[0]
    assert "slow (" in text
    assert "Result" not in text


def test_async_error_reraised(caplog):
    caplog.set_level(logging.INFO, logger="httplog")

    @log_monitoring(properties=PROPS)
    async def fail():
        raise NotFoundError("gone")

    with pytest.raises(NotFoundError, match="gone"):
        asyncio.run(fail())
    assert "NotFoundError" in _method_records(caplog)[0]


def test_sensitive_arguments_masked(caplog):
    caplog.set_level(logging.INFO, logger="httplog")

    @log_monitoring(properties=PROPS)
    def authenticate(user, password):
        return True

    authenticate("alice", password="hunter2")
    text = _method_records(caplog)[0]
    assert "hunter2" not in text
    assert '"password": "****"' in text


def test_unconvertible_argument_does_not_break(caplog):
    caplog.set_level(logging.INFO, logger="httplog")

    @log_monitoring(properties=PROPS)
    def handle(thing, n):
        return n

    assert handle(object(), 3) == 3
    text = _method_records(caplog)[0]
    assert '"thing": "<object>"' in text
    assert '"n": 3' in text


def test_parameters_not_logged(caplog):
    caplog.set_level(logging.INFO, logger="httplog")

    @log_monitoring(properties=PROPS, log_parameters=False)
    def quiet(secret):
        return None

    quiet("s3")
    text = _method_records(caplog)[0]
    assert "Args:" not in text
    assert "s3" not in text


def test_disabled_emits_nothing(caplog):
    caplog.set_level(logging.INFO, logger="httplog")

    @log_monitoring(properties=LoggingProperties(enabled=False))
    def noop():
        return 1

    assert noop() == 1
    assert _method_records(caplog) == []


def test_endpoint_inside_request(caplog):
    caplog.set_level(logging.INFO, logger="httplog")
    app = FastAPI()

    @app.post("/login")
    @log_monitoring(properties=PROPS)
    async def login(body: Login):
        return {"user": body.user}

    install_http_logging(app, properties=PROPS)
    r = TestClient(app).post("/login?src=web", json={"user": "alice", "password": "hunter2"},
                             headers={"X-Request-Id": "abc123"})
    assert r.json() == {"user": "alice"}

    text = _method_records(caplog)[0]
    assert "[METHOD LOGGING START] [RequestId: abc123]" in text
    assert "[HTTP REQUEST] [RequestId: abc123]" in text
    assert "-> POST /login" in text
    assert "- src: web" in text
    assert "hunter2" not in text
    assert '"password": "****"' in text
