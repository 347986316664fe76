# FILE: httplog/correlation.py
from __future__ import annotations

import contextvars
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional

from starlette.types import Scope

from . import logctx
from .kv import KeyValueBlock

if TYPE_CHECKING:  # pragma: no cover
    from .capture import BodyCapture
    from .config import LoggingProperties

# Request attribute names the id is published under (scope["state"]).
REQUEST_ID_ATTRIBUTES = ("RequestID", "requestId")

_current: contextvars.ContextVar[Optional["RequestContext"]] = contextvars.ContextVar(
    "httplog_request_context", default=None
)


def generate_id() -> str:
    return uuid.uuid4().hex


def resolve_id(inbound: Optional[str]) -> str:
    """Adopt a non-blank inbound id verbatim, otherwise mint a fresh one."""
    if inbound is not None and inbound.strip():
        return inbound
    return generate_id()


@dataclass
class RequestContext:
    """
    Per-request state handed explicitly through capture, classification and
    rendering. The ambient copy (``current_context()``) points at the same
    object.
    """

    request_id: str
    method: str = ""
    path: str = ""
    query_string: str = ""
    headers: KeyValueBlock = field(default_factory=KeyValueBlock)
    content_type: Optional[str] = None
    started: float = field(default_factory=time.perf_counter)
    attributes: Dict[str, Any] = field(default_factory=dict)
    capture: Optional["BodyCapture"] = None
    _token: Optional[contextvars.Token] = field(default=None, repr=False, compare=False)

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)


def current_context() -> Optional[RequestContext]:
    return _current.get()


def request_info_from_scope(scope: Scope) -> Dict[str, Any]:
    headers = KeyValueBlock.from_raw_headers(scope.get("headers", []))
    ctype = headers.get("content-type")
    return {
        "method": scope.get("method", ""),
        "path": scope.get("path", ""),
        "query_string": (scope.get("query_string") or b"").decode("latin-1"),
        "headers": headers,
        "content_type": ctype[0] if ctype else None,
    }


def inbound_id_from_scope(scope: Scope, header_name: str) -> Optional[str]:
    key = header_name.lower().encode("latin-1")
    for k, v in scope.get("headers", []):
        if k.lower() == key:
            return v.decode("latin-1")
    return None


def publish_to_scope(scope: Scope, request_id: str) -> None:
    state = scope.setdefault("state", {})
    for name in REQUEST_ID_ATTRIBUTES:
        state[name] = request_id


def get_request_id(scope: Optional[Scope] = None) -> Optional[str]:
    """
    Look up the id of the request being handled: request attributes first,
    then the ambient context.
    """
    if scope is not None:
        state = scope.get("state") or {}
        for name in REQUEST_ID_ATTRIBUTES:
            v = state.get(name)
            if isinstance(v, str) and v:
                return v
    ctx = current_context()
    return ctx.request_id if ctx is not None else None


class CorrelationManager:
    """
    Assigns the correlation id of a request and owns its ambient lifetime.

    ``begin`` publishes the id to the context variable and the log context;
    ``end`` removes both and must run on every exit path.
    """

    def __init__(self, properties: "LoggingProperties"):
        self._key = properties.context_key

    def begin(self, inbound: Optional[str] = None, **request_info: Any) -> RequestContext:
        ctx = RequestContext(request_id=resolve_id(inbound), **request_info)
        ctx._token = _current.set(ctx)
        logctx.bind(**{self._key: ctx.request_id})
        return ctx

    def end(self, ctx: Optional[RequestContext] = None) -> None:
        token = ctx._token if ctx is not None else None
        try:
            if token is not None:
                _current.reset(token)
            else:
                _current.set(None)
        except ValueError:
            # Token from another Context (e.g. a copied task context).
            _current.set(None)
        finally:
            if ctx is not None:
                ctx._token = None
            outer = _current.get()
            if outer is None:
                logctx.unbind(self._key)
            else:
                logctx.bind(**{self._key: outer.request_id})

    @contextmanager
    def request_scope(self, inbound: Optional[str] = None, **request_info: Any) -> Iterator[RequestContext]:
        ctx = self.begin(inbound, **request_info)
        try:
            yield ctx
        finally:
            self.end(ctx)
