# FILE: httplog/monitor.py
from __future__ import annotations

import functools
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel
from starlette.responses import Response

from .capture import CapturedBody
from .classify import ContentKind, RenderedBody, classify, parse_charset, render_body, resolve_charset
from .config import LoggingProperties, get_properties
from .correlation import CorrelationManager, RequestContext, current_context
from .kv import KeyValueBlock
from .logctx import get_logger
from .masking import MaskingPolicy, render, to_tree
from .render import (
    FOOTER_LINE,
    banner,
    body_lines,
    error_lines,
    headers_lines,
    indent_block,
    query_lines,
    response_payload,
)

_logger = logging.getLogger(__name__)

MARKER_ATTR = "__log_monitoring__"
HEADER_TITLE = "[METHOD LOGGING START]"
OMITTED = "[omitted]"
_SKIPPED_ARGS = ("self", "cls")


@dataclass(frozen=True)
class MonitorSpec:
    """What a monitored callable wants logged."""

    log_parameters: bool = True
    log_result: bool = True
    log_execution_time: bool = True


def _label(func: Callable[..., Any]) -> str:
    qualname = getattr(func, "__qualname__", getattr(func, "__name__", "?"))
    if "." in qualname:
        return qualname
    module = (getattr(func, "__module__", None) or "").rsplit(".", 1)[-1]
    return f"{module}.{qualname}" if module else qualname


def _bind_arguments(
    sig: Optional[inspect.Signature], args: Tuple[Any, ...], kwargs: Dict[str, Any]
) -> Dict[str, Any]:
    if sig is not None:
        try:
            bound = sig.bind_partial(*args, **kwargs)
            return dict(bound.arguments)
        except TypeError:
            pass
    return {"args": list(args), "kwargs": dict(kwargs)}


def _argument_tree(arguments: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert arguments one by one so a single unsupported value does not
    push the whole mapping into the plain-text fallback.
    """
    out: Dict[str, Any] = {}
    for name, value in arguments.items():
        if name in _SKIPPED_ARGS:
            continue
        try:
            out[name] = to_tree(value)
        except Exception:
            out[name] = f"<{type(value).__name__}>"
    return out


class MethodLogBuilder:
    """
    Accumulates the text of one monitored invocation. Nothing is emitted
    until :meth:`finish`, so a record is always complete.
    """

    def __init__(self, properties: LoggingProperties, spec: MonitorSpec, label: str, request_id: str):
        self._props = properties
        self._policy: MaskingPolicy = properties.masking_policy()
        self._spec = spec
        self._label = label
        self._lines: List[str] = ["", banner(f"{HEADER_TITLE} [RequestId: {request_id}]"), ""]

    def _render(self, value: Any) -> str:
        return render(
            value,
            self._policy,
            indent=self._props.indent_size if self._props.pretty_json else None,
            max_length=self._props.max_body_length,
        )

    # ---- request -------------------------------------------------------- #

    def _request_body(self, ctx: RequestContext, arguments: Dict[str, Any]) -> Optional[RenderedBody]:
        kind = classify(ctx.content_type)
        if kind is ContentKind.JSON:
            models = [v for v in arguments.values() if isinstance(v, BaseModel)]
            if models:
                only = models[0] if len(models) == 1 else models
                return RenderedBody(kind, self._render(only))
        if kind is ContentKind.MULTIPART or ctx.capture is None:
            return render_body(_no_body(ctx), self._props, self._policy)
        return render_body(ctx.capture.request_body(), self._props, self._policy)

    def add_request(self, ctx: RequestContext, arguments: Dict[str, Any]) -> None:
        ind = self._props.indent
        lines = self._lines
        lines.append(f"[HTTP REQUEST] [RequestId: {ctx.request_id}]")
        lines.append(f"-> {ctx.method} {ctx.path}")
        if self._props.log_request_headers:
            lines += headers_lines(ctx.headers, self._policy, ind)
        charset = resolve_charset(parse_charset(ctx.content_type))
        lines += query_lines(ctx.query_string, charset, self._props, self._policy, ind)
        body = self._request_body(ctx, arguments) if self._props.log_request_body else None
        lines += body_lines(body, self._policy, ind)
        lines.append("")

    # ---- method --------------------------------------------------------- #

    def add_arguments(self, arguments: Dict[str, Any]) -> None:
        if not self._spec.log_parameters:
            return
        ind = self._props.indent
        self._lines.append(f"[METHOD] {self._label} Args:")
        self._lines.append(indent_block(self._render(_argument_tree(arguments)), ind))
        self._lines.append("")

    def _printable_result(self, result: Any) -> Any:
        if isinstance(result, Response):
            printable: Dict[str, Any] = {"_type": type(result).__name__, "status": result.status_code}
            if self._props.log_response_headers:
                headers = KeyValueBlock.from_raw_headers(result.raw_headers)
                printable["headers"] = headers.to_dict(self._policy)
            printable["body"] = response_payload(result) if self._props.log_response_body else OMITTED
            return printable
        if not self._props.log_response_body:
            return OMITTED
        return result

    def add_result(self, result: Any, took_ms: int) -> None:
        ind = self._props.indent
        if self._spec.log_result:
            self._lines.append(f"<- {self._label} Result ({took_ms} ms):")
            self._lines.append(indent_block(self._render(self._printable_result(result)), ind))
        elif self._spec.log_execution_time:
            self._lines.append(f"<- {self._label} ({took_ms} ms)")

    def add_error(self, exc: BaseException, took_ms: int) -> None:
        self._lines.append(f"<- {self._label} ERROR ({took_ms} ms):")
        self._lines += error_lines(exc, self._props, self._policy, self._props.indent)

    def finish(self) -> str:
        self._lines += ["", FOOTER_LINE]
        return "\n".join(self._lines)


def _no_body(ctx: RequestContext) -> CapturedBody:
    return CapturedBody(b"", ctx.content_type, parse_charset(ctx.content_type))


class _Invocation:
    """One monitored call: correlation scope, record assembly and emission."""

    def __init__(self, func: Callable[..., Any], spec: MonitorSpec, properties: Optional[LoggingProperties], logger):
        self.props = properties or get_properties()
        self.spec = spec
        self.func = func
        self.log = logger or get_logger(self.props.logger_name, "method")
        self.owned: Optional[RequestContext] = None
        self.builder: Optional[MethodLogBuilder] = None
        self.t0 = 0.0

    def start(self, sig: Optional[inspect.Signature], args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> None:
        ctx = current_context()
        if ctx is None:
            ctx = self.owned = CorrelationManager(self.props).begin(None)
        self.t0 = time.perf_counter()
        try:
            arguments = _bind_arguments(sig, args, kwargs)
            builder = MethodLogBuilder(self.props, self.spec, _label(self.func), ctx.request_id)
            if ctx is not self.owned and ctx.method:
                builder.add_request(ctx, arguments)
            builder.add_arguments(arguments)
            self.builder = builder
        except Exception:
            _logger.debug("could not prepare method log for %s", _label(self.func), exc_info=True)

    def _took(self) -> int:
        return int((time.perf_counter() - self.t0) * 1000)

    def succeeded(self, result: Any) -> None:
        if self.builder is None:
            return
        try:
            self.builder.add_result(result, self._took())
            text = self.builder.finish()
        except Exception:
            _logger.debug("could not render result of %s", _label(self.func), exc_info=True)
            return
        self.log.info(text)

    def failed(self, exc: BaseException) -> None:
        if self.builder is None:
            return
        try:
            self.builder.add_error(exc, self._took())
            text = self.builder.finish()
        except Exception:
            _logger.debug("could not render error of %s", _label(self.func), exc_info=True)
            return
        self.log.info(text)

    def close(self) -> None:
        if self.owned is not None:
            CorrelationManager(self.props).end(self.owned)
            self.owned = None


def log_monitoring(
    _func: Optional[Callable[..., Any]] = None,
    *,
    log_parameters: bool = True,
    log_result: bool = True,
    log_execution_time: bool = True,
    properties: Optional[LoggingProperties] = None,
    logger: Optional[logging.Logger] = None,
):
    """
    Decorator that logs a call's arguments, result or error and duration as
    one record. Works for plain and ``async def`` callables and keeps their
    signature, so FastAPI endpoints can be decorated directly::

        @app.post("/users")
        @log_monitoring(log_result=False)
        async def create_user(body: UserIn): ...

    The return value and any raised exception reach the caller unchanged.
    """
    spec = MonitorSpec(log_parameters, log_result, log_execution_time)

    def decorate(func: Callable[..., Any]) -> Callable[..., Any]:
        try:
            sig: Optional[inspect.Signature] = inspect.signature(func)
        except (TypeError, ValueError):
            sig = None

        def _enabled() -> bool:
            return (properties or get_properties()).enabled

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                if not _enabled():
                    return await func(*args, **kwargs)
                inv = _Invocation(func, spec, properties, logger)
                inv.start(sig, args, kwargs)
                try:
                    result = await func(*args, **kwargs)
                except Exception as exc:
                    inv.failed(exc)
                    raise
                else:
                    inv.succeeded(result)
                    return result
                finally:
                    inv.close()

            setattr(async_wrapper, MARKER_ATTR, spec)
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _enabled():
                return func(*args, **kwargs)
            inv = _Invocation(func, spec, properties, logger)
            inv.start(sig, args, kwargs)
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                inv.failed(exc)
                raise
            else:
                inv.succeeded(result)
                return result
            finally:
                inv.close()

        setattr(wrapper, MARKER_ATTR, spec)
        return wrapper

    if _func is not None:
        return decorate(_func)
    return decorate


def monitor_spec(func: Callable[..., Any]) -> Optional[MonitorSpec]:
    return getattr(func, MARKER_ATTR, None)
