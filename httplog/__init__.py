# FILE: httplog/__init__.py
"""
HTTP traffic logging for ASGI applications.

Captures request/response bodies without consuming them, masks sensitive
fields, renders bounded human-readable records and tags each of them with
the request's correlation id.
"""
from .capture import BodyCapture, CapturedBody
from .classify import ContentKind, classify, render_body
from .config import LoggingProperties, get_properties, load_properties
from .correlation import CorrelationManager, RequestContext, current_context, get_request_id
from .kv import KeyValueBlock, parse_query
from .logctx import RequestIdFilter, configure_logging
from .masking import MaskingPolicy, render
from .middleware import CorrelationMiddleware, RequestResponseLoggingMiddleware, install_http_logging
from .monitor import MonitorSpec, log_monitoring

__all__ = [
    "BodyCapture",
    "CapturedBody",
    "ContentKind",
    "classify",
    "render_body",
    "LoggingProperties",
    "get_properties",
    "load_properties",
    "CorrelationManager",
    "RequestContext",
    "current_context",
    "get_request_id",
    "KeyValueBlock",
    "parse_query",
    "RequestIdFilter",
    "configure_logging",
    "MaskingPolicy",
    "render",
    "CorrelationMiddleware",
    "RequestResponseLoggingMiddleware",
    "install_http_logging",
    "MonitorSpec",
    "log_monitoring",
]
