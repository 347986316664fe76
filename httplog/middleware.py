# FILE: httplog/middleware.py
"""
ASGI middleware for request/response logging.

Implemented as pure ASGI middleware (not BaseHTTPMiddleware) so the
response body can be held and written back exactly once.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import FastAPI
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .capture import BodyCapture, set_header
from .config import LoggingProperties, get_properties
from .correlation import (
    CorrelationManager,
    current_context,
    inbound_id_from_scope,
    publish_to_scope,
    request_info_from_scope,
)
from .logctx import get_logger
from .paths import PathMatcher
from .render import HttpExchange, HttpLogRenderer

_logger = logging.getLogger(__name__)


class CorrelationMiddleware:
    """
    Gives every HTTP request a correlation id.

    The inbound header value is adopted when present; otherwise a new id is
    generated. The id is echoed on the response header, published as request
    attributes and bound to the log context until the request ends. The
    ``enabled`` switch only silences logging; ids are assigned regardless.
    """

    def __init__(self, app: ASGIApp, *, properties: Optional[LoggingProperties] = None):
        self.app = app
        self._props = properties or get_properties()
        self._manager = CorrelationManager(self._props)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        header = self._props.correlation_header_name
        inbound = inbound_id_from_scope(scope, header)
        with self._manager.request_scope(inbound, **request_info_from_scope(scope)) as ctx:
            publish_to_scope(scope, ctx.request_id)

            async def send_wrapper(message: Message) -> None:
                if message["type"] == "http.response.start":
                    message = set_header(message, header, ctx.request_id)
                await send(message)

            await self.app(scope, receive, send_wrapper)


class RequestResponseLoggingMiddleware:
    """
    Emits one log record per HTTP request with headers, query, bodies,
    status and duration (or the error raised by the application).

    Requests on excluded paths are passed through untouched. When an outer
    instance already wraps the request, this one passes through and the
    outer one logs.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        properties: Optional[LoggingProperties] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.app = app
        self._props = properties or get_properties()
        self._manager = CorrelationManager(self._props)
        self._renderer = HttpLogRenderer(self._props)
        self._excluded = PathMatcher(self._props.excluded_paths)
        self._log = logger or get_logger(self._props.logger_name, "http")

    def _skip(self, scope: Scope) -> bool:
        if scope["type"] != "http":
            return True
        if not (self._props.enabled and self._props.http_filter_enabled):
            return True
        if BodyCapture.from_scope(scope) is not None:
            return True
        return bool(self._excluded) and self._excluded.matches(scope.get("path", ""))

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if self._skip(scope):
            await self.app(scope, receive, send)
            return

        ctx = current_context()
        owned = ctx is None
        if owned:
            inbound = inbound_id_from_scope(scope, self._props.correlation_header_name)
            ctx = self._manager.begin(inbound, **request_info_from_scope(scope))
            publish_to_scope(scope, ctx.request_id)

        capture = BodyCapture(
            scope, receive, send, response_headers=[(self._props.correlation_header_name, ctx.request_id)]
        )
        ctx.capture = capture
        t0 = time.perf_counter()
        try:
            try:
                await self.app(scope, capture.receive, capture.send)
            except Exception as exc:
                self._emit(scope, capture, ctx.request_id, t0, exc)
                await capture.flush()
                raise
            self._emit(scope, capture, ctx.request_id, t0, None)
            await capture.flush()
        finally:
            ctx.capture = None
            if owned:
                self._manager.end(ctx)

    def _emit(
        self,
        scope: Scope,
        capture: BodyCapture,
        request_id: str,
        t0: float,
        error: Optional[BaseException],
    ) -> None:
        try:
            info = request_info_from_scope(scope)
            exchange = HttpExchange(
                request_id=request_id,
                method=info["method"],
                path=info["path"],
                query_string=info["query_string"],
                request_headers=info["headers"],
                request_body=capture.request_body(),
                status=capture.status,
                elapsed_ms=int((time.perf_counter() - t0) * 1000),
                response_headers=capture.response_headers,
                response_body=capture.response_body(),
                error=error,
            )
            text = self._renderer.render(exchange)
        except Exception:
            _logger.debug("skipping http log record", exc_info=True)
            return
        self._log.info(text)


def install_http_logging(
    app: FastAPI,
    *,
    properties: Optional[LoggingProperties] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Install request/response logging with correlation ids.

    The logging layer is a regular user middleware. The correlation layer
    wraps the stack Starlette builds, outside ServerErrorMiddleware, so
    the 500 sent for an unhandled error carries the id as well.
    """
    props = properties or get_properties()
    app.add_middleware(RequestResponseLoggingMiddleware, properties=props, logger=logger)

    build_stack = app.build_middleware_stack

    def build_with_correlation() -> ASGIApp:
        return CorrelationMiddleware(build_stack(), properties=props)

    app.build_middleware_stack = build_with_correlation  # type: ignore[method-assign]
