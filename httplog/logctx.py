# FILE: httplog/logctx.py
from __future__ import annotations

import contextvars
import logging
import sys
from typing import Any, Dict, Optional

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s - %(message)s"

# ---------- Context management ----------
_log_ctx: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "httplog_log_ctx", default={}
)


def bind(**fields: Any) -> None:
    """Merge fields into the current logging context (per-task / per-thread)."""
    cur = dict(_log_ctx.get())
    for k, v in fields.items():
        if v is None:
            continue
        cur[str(k)] = v
    _log_ctx.set(cur)


def unbind(*keys: str) -> None:
    cur = dict(_log_ctx.get())
    for k in keys:
        cur.pop(k, None)
    _log_ctx.set(cur)


def context() -> Dict[str, Any]:
    return dict(_log_ctx.get())


# ---------- Record enrichment ----------
class RequestIdFilter(logging.Filter):
    """
    Copies the bound correlation id onto each record as ``request_id`` so
    plain text formats can print it. Records logged outside a request get
    ``-``.
    """

    def __init__(self, key: str = "requestId"):
        super().__init__()
        self.key = key

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = context().get(self.key, "-")
        return True


# ---------- Root / uvicorn integration ----------
def _clear_handlers(logger: logging.Logger) -> None:
    for h in list(logger.handlers):
        logger.removeHandler(h)


def configure_logging(
    level: str = "INFO",
    *,
    stream: Any = None,
    fmt: str = DEFAULT_FORMAT,
    context_key: str = "requestId",
    include_uvicorn: bool = False,
) -> logging.Logger:
    """
    Configure the root logger (and optionally uvicorn's) with a single text
    handler that prints the request id of the record's context.
    """
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    stream = stream or sys.stderr

    h = logging.StreamHandler(stream=stream)
    h.setFormatter(logging.Formatter(fmt))
    h.addFilter(RequestIdFilter(context_key))
    h.setLevel(lvl)

    root = logging.getLogger()
    root.setLevel(lvl)
    _clear_handlers(root)
    root.addHandler(h)

    if include_uvicorn:
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
            lg = logging.getLogger(name)
            lg.setLevel(lvl)
            _clear_handlers(lg)
            lg.addHandler(h)
            lg.propagate = False

    return root


def get_logger(name: str = "httplog", child: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(f"{name}.{child}" if child else name)
