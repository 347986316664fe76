# httplog/tests/test_render.py
from starlette.exceptions import HTTPException

from httplog.capture import CapturedBody
from httplog.config import LoggingProperties
from httplog.kv import KeyValueBlock
from httplog.render import (
    FOOTER_LINE,
    HttpExchange,
    HttpLogRenderer,
    banner,
    extract_error_body,
    resolve_status,
)

PROPS = LoggingProperties(sensitive_keys=("password", "authorization"))


def _exchange(**kw):
    base = dict(
        request_id="abc123",
        method="POST",
        path="/login",
        query_string="next=%2Fhome&tag=a&tag=b",
        request_headers=KeyValueBlock([("authorization", "Bearer x"), ("content-type", "application/json")]),
        request_body=CapturedBody(b'{"user":"u","password":"p"}', "application/json"),
        status=200,
        elapsed_ms=7,
        response_headers=KeyValueBlock([("content-type", "application/json")]),
        response_body=CapturedBody(b'{"ok":true}', "application/json"),
    )
    base.update(kw)
    return HttpExchange(**base)


class TeapotError(Exception):
    status_code = 418

    def __init__(self, msg):
        super().__init__(msg)
        self.body = {"reason": msg, "password": "p"}


def test_banner_width():
    assert len(banner("[HTTP]")) == len(FOOTER_LINE)


def test_multiline_record():
    text = HttpLogRenderer(PROPS).render(_exchange())
    assert "[RequestId: abc123]" in text
    assert "-> Request: POST /login" in text
    assert "- authorization: ****" in text
    assert "- tag: [a, b]" in text
    assert "- next: /home" in text
    assert '"password": "****"' in text
    assert "<- Response: 200 (7 ms)" in text
    assert text.endswith(FOOTER_LINE)
    assert "Bearer x" not in text


def test_multiline_omitted_sections():
    props = LoggingProperties(log_request_body=False, log_response_headers=False)
    text = HttpLogRenderer(props).render(_exchange(query_string=""))
    assert "Query: (empty)" in text
    assert "Body: (omitted)" in text
    assert text.count("Headers:") == 1


def test_oneline_record():
    props = LoggingProperties(multiline=False, sensitive_keys=("password",))
    text = HttpLogRenderer(props).render(_exchange())
    assert "\n" not in text
    assert text.startswith("[HTTP] requestId=abc123 method=POST path=/login")
    assert 'requestBody={"user":"u","password":"****"}' in text
    assert "status=200 durationMs=7" in text


def test_error_record():
    exc = TeapotError("no coffee")
    text = HttpLogRenderer(PROPS).render(_exchange(status=None, error=exc))
    assert "<- Error: 418 (7 ms)" in text
    assert "TeapotError" in text
    assert "Message: no coffee" in text
    assert "Status: 418" in text
    assert '"reason": "no coffee"' in text
    assert '"password": "****"' in text


def test_error_status_defaults_to_500():
    text = HttpLogRenderer(PROPS).render(_exchange(status=None, error=ValueError("bad")))
    assert "<- Error: 500" in text


def test_error_body_extraction():
    assert extract_error_body(HTTPException(404, "nope")) == {"detail": "nope"}
    assert extract_error_body(ValueError("bad")) == {"message": "bad"}
    assert extract_error_body(ValueError()) is None
    assert resolve_status(HTTPException(404)) == 404
    assert resolve_status(ValueError()) is None
