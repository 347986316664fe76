# FILE: httplog/render.py
from __future__ import annotations

import json
import logging
import traceback
from dataclasses import dataclass, field
from typing import Any, List, Optional

from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from .capture import CapturedBody
from .classify import ContentKind, RenderedBody, parse_charset, render_body, resolve_charset
from .config import LoggingProperties
from .kv import KeyValueBlock, parse_query
from .masking import MaskingPolicy, dumps, parse_json, render, truncate

_logger = logging.getLogger(__name__)

RULE_WIDTH = 66
FOOTER_LINE = "=" * RULE_WIDTH

# Exception attributes (or zero-argument methods) that may carry a payload.
_ERROR_BODY_ATTRS = ("body", "payload", "error_response", "response", "to_response")


# ---------------------------------------------------------------------------
# Layout helpers
# ---------------------------------------------------------------------------


def banner(title: str) -> str:
    label = f" {title} "
    if len(label) >= RULE_WIDTH:
        return label.strip()
    left = (RULE_WIDTH - len(label)) // 2
    return "=" * left + label + "=" * (RULE_WIDTH - len(label) - left)


def indent_block(text: str, prefix: str) -> str:
    """Prefix every line of ``text`` so nested sections stay aligned."""
    return prefix + text.replace("\n", "\n" + prefix)


def flatten(text: str) -> str:
    return text.replace("\r", "\\r").replace("\n", "\\n")


def qualified_name(exc: BaseException) -> str:
    cls = type(exc)
    if cls.__module__ in ("builtins", "__main__"):
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


# ---------------------------------------------------------------------------
# Error inspection (best effort)
# ---------------------------------------------------------------------------


def resolve_status(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        v = getattr(exc, attr, None)
        if isinstance(v, int) and not isinstance(v, bool) and 100 <= v <= 599:
            return v
    return None


def response_payload(resp: Response) -> Any:
    body = getattr(resp, "body", None)
    if body is None:
        return "[streaming]"
    charset = resolve_charset(getattr(resp, "charset", None))
    text = bytes(body).decode(charset, errors="replace")
    ok, tree = parse_json(text)
    return tree if ok else text


def extract_error_body(exc: BaseException) -> Any:
    """
    Find something worth showing as the error payload.

    Tries the HTTPException detail, then the attributes in _ERROR_BODY_ATTRS
    (calling zero-argument methods), and finally the message. Returns None
    when nothing is available.
    """
    if isinstance(exc, StarletteHTTPException) and exc.detail is not None:
        return {"detail": exc.detail}
    for name in _ERROR_BODY_ATTRS:
        try:
            candidate = getattr(exc, name, None)
            if callable(candidate) and not isinstance(candidate, (type, Response)):
                candidate = candidate()
        except Exception:
            continue
        if isinstance(candidate, Response):
            return response_payload(candidate)
        if candidate is not None:
            return candidate
    msg = str(exc)
    return {"message": msg} if msg.strip() else None


def stack_excerpt(exc: BaseException, depth: int) -> List[str]:
    if depth <= 0 or exc.__traceback__ is None:
        return []
    frames = traceback.extract_tb(exc.__traceback__)[-depth:]
    return [f'File "{f.filename}", line {f.lineno}, in {f.name}' for f in frames]


def error_lines(exc: BaseException, properties: LoggingProperties, policy: MaskingPolicy, indent: str) -> List[str]:
    """Indented error block shared by the HTTP and method renderers."""
    lines = [f"{indent}Exception: {qualified_name(exc)}"]
    msg = str(exc)
    if msg:
        lines.append(f"{indent}Message: {truncate(flatten(msg), properties.max_body_length)}")
    status = resolve_status(exc)
    if status is not None:
        lines.append(f"{indent}Status: {status}")
    payload = extract_error_body(exc)
    if payload is not None:
        text = render(payload, policy, indent=properties.indent_size, max_length=properties.max_body_length)
        lines.append(f"{indent}Body:")
        lines.append(indent_block(text, indent))
    else:
        lines.append(f"{indent}Body: (omitted or handled by exception handler)")
    stack = stack_excerpt(exc, properties.stack_trace_depth)
    if stack:
        lines.append(f"{indent}Stack:")
        lines.extend(f"{indent}{indent}{s}" for s in stack)
    return lines


# ---------------------------------------------------------------------------
# Section helpers
# ---------------------------------------------------------------------------


def headers_lines(block: KeyValueBlock, policy: MaskingPolicy, indent: str, label: str = "Headers") -> List[str]:
    if not block:
        return [f"{indent}{label}: (empty)"]
    return [f"{indent}{label}:", block.format_block(indent, policy, join_values=True).rstrip("\n")]


def query_lines(query_string: str, charset: str, properties: LoggingProperties, policy: MaskingPolicy, indent: str) -> List[str]:
    params = parse_query(query_string, charset)
    if properties.pretty_query_params:
        if not params:
            return [f"{indent}Query: (empty)"]
        return [f"{indent}Query:", params.format_block(indent, policy).rstrip("\n")]
    if not query_string:
        return [f"{indent}Query: (empty)"]
    raw = params.to_raw(policy) if any(policy.matches(k) for k in params.keys()) else query_string
    return [f"{indent}QueryRaw: {raw}"]


def body_lines(rendered: Optional[RenderedBody], policy: MaskingPolicy, indent: str, label: str = "Body") -> List[str]:
    if rendered is None:
        return [f"{indent}{label}: (omitted)"]
    if rendered.form is not None:
        if not rendered.form:
            return [f"{indent}Form: (empty)", f"{indent}{label}: (suppressed, see Form)"]
        return [
            f"{indent}Form:",
            rendered.form.format_block(indent, policy).rstrip("\n"),
            f"{indent}{label}: (suppressed, see Form)",
        ]
    if rendered.kind is ContentKind.MULTIPART:
        return [f"{indent}{label}: {rendered.text}"]
    if not rendered.text:
        return [f"{indent}{label}: (empty)"]
    return [f"{indent}{label}:", indent_block(rendered.text, indent)]


def compact_body(rendered: Optional[RenderedBody], policy: MaskingPolicy) -> Optional[str]:
    if rendered is None or rendered.empty:
        return None
    if rendered.form is not None:
        return dumps(rendered.form.to_compact(policy), None)
    return flatten(rendered.text)


# ---------------------------------------------------------------------------
# HTTP exchange
# ---------------------------------------------------------------------------


@dataclass
class HttpExchange:
    """Everything the request/response log record is built from."""

    request_id: Optional[str]
    method: str
    path: str
    query_string: str = ""
    request_headers: KeyValueBlock = field(default_factory=KeyValueBlock)
    request_body: CapturedBody = field(default_factory=CapturedBody)
    status: Optional[int] = None
    elapsed_ms: int = 0
    response_headers: KeyValueBlock = field(default_factory=KeyValueBlock)
    response_body: CapturedBody = field(default_factory=CapturedBody)
    error: Optional[BaseException] = None

    @property
    def effective_status(self) -> int:
        if self.status is not None:
            return self.status
        if self.error is not None:
            return resolve_status(self.error) or 500
        return 200


class HttpLogRenderer:
    """Turns an HttpExchange into the text of one log record."""

    def __init__(self, properties: LoggingProperties):
        self._props = properties
        self._policy = properties.masking_policy()

    def render(self, ex: HttpExchange) -> str:
        try:
            if self._props.multiline:
                return self._multiline(ex)
            return self._oneline(ex)
        except Exception:
            _logger.debug("http log rendering failed", exc_info=True)
            return (
                f"[HTTP] [RequestId: {ex.request_id}] {ex.method} {ex.path} "
                f"=> Status={ex.effective_status}, DurationMs={ex.elapsed_ms} (details unavailable)"
            )

    def _request_rendered(self, ex: HttpExchange, *, compact: bool) -> Optional[RenderedBody]:
        if not self._props.log_request_body:
            return None
        return render_body(ex.request_body, self._props, self._policy, compact=compact)

    def _response_rendered(self, ex: HttpExchange, *, compact: bool) -> Optional[RenderedBody]:
        if not self._props.log_response_body:
            return None
        return render_body(ex.response_body, self._props, self._policy, compact=compact)

    def _multiline(self, ex: HttpExchange) -> str:
        p = self._props
        ind = p.indent
        charset = resolve_charset(parse_charset(ex.request_body.content_type))

        title = "[HTTP]" if ex.request_id is None else f"[HTTP] [RequestId: {ex.request_id}]"
        lines = [banner(title), f"-> Request: {ex.method} {ex.path}"]
        if p.log_request_headers:
            lines += headers_lines(ex.request_headers, self._policy, ind)
        lines += query_lines(ex.query_string, charset, p, self._policy, ind)
        lines += body_lines(self._request_rendered(ex, compact=False), self._policy, ind)

        if ex.status is not None:
            lines.append(f"<- Response: {ex.status} ({ex.elapsed_ms} ms)")
            if p.log_response_headers:
                lines += headers_lines(ex.response_headers, self._policy, ind)
            lines += body_lines(self._response_rendered(ex, compact=False), self._policy, ind)
        if ex.error is not None:
            lines.append(f"<- Error: {ex.effective_status} ({ex.elapsed_ms} ms)")
            lines += error_lines(ex.error, p, self._policy, ind)

        lines.append(FOOTER_LINE)
        return "\n".join(lines)

    def _oneline(self, ex: HttpExchange) -> str:
        p = self._props
        parts = ["[HTTP]"]
        if ex.request_id is not None:
            parts.append(f"requestId={ex.request_id}")
        parts += [f"method={ex.method}", f"path={ex.path}"]
        if ex.query_string:
            charset = resolve_charset(parse_charset(ex.request_body.content_type))
            params = parse_query(ex.query_string, charset)
            parts.append(f"query={dumps(params.to_compact(self._policy), None)}")
        if p.log_request_headers and ex.request_headers:
            parts.append(f"requestHeaders={dumps(ex.request_headers.to_compact(self._policy), None)}")
        req_body = compact_body(self._request_rendered(ex, compact=True), self._policy)
        if req_body is not None:
            parts.append(f"requestBody={req_body}")

        parts += [f"status={ex.effective_status}", f"durationMs={ex.elapsed_ms}"]
        if ex.status is not None:
            if p.log_response_headers and ex.response_headers:
                parts.append(f"responseHeaders={dumps(ex.response_headers.to_compact(self._policy), None)}")
            resp_body = compact_body(self._response_rendered(ex, compact=True), self._policy)
            if resp_body is not None:
                parts.append(f"responseBody={resp_body}")
        if ex.error is not None:
            parts.append(f"error={qualified_name(ex.error)}")
            parts.append(f"errorMessage={json.dumps(str(ex.error), ensure_ascii=False)}")
            payload = extract_error_body(ex.error)
            if payload is not None:
                parts.append(
                    "errorBody=" + flatten(render(payload, self._policy, indent=None, max_length=p.max_body_length))
                )
        return " ".join(parts)
