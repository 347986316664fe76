# FILE: httplog/config.py
from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, field_validator

from .masking import MaskingPolicy


_log = logging.getLogger(__name__)

_ENV_PREFIX = "HTTPLOG_"
_CONFIG_PATH_ENV = "HTTPLOG_CONFIG_PATH"


# ---------------------------------------------------------------------------
# Env helpers
# ---------------------------------------------------------------------------


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    v = raw.strip().lower()
    return v in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        _log.warning("ignoring non-integer value for %s: %r", name, raw)
        return default


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def _load_yaml_mapping(path: str) -> Dict[str, Any]:
    """
    Load the logging section from a YAML file.

    Accepts either a top-level mapping of properties or a mapping nested
    under an ``httplog`` key. Missing files are ignored.
    """
    if not path or not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        doc = yaml.safe_load(f)
    if not isinstance(doc, dict):
        return {}
    section = doc.get("httplog", doc)
    if not isinstance(section, dict):
        return {}
    return {str(k): v for k, v in section.items()}


# ---------------------------------------------------------------------------
# Properties model
# ---------------------------------------------------------------------------


class LoggingProperties(BaseModel):
    """
    Read-only snapshot of every tunable used by the capture-and-render
    pipeline. Loaded once per process; components only read it.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    # --- switches ---------------------------------------------------------

    enabled: bool = True
    http_filter_enabled: bool = True

    log_request_headers: bool = True
    log_request_body: bool = True
    log_response_headers: bool = True
    log_response_body: bool = True

    # --- rendering --------------------------------------------------------

    max_body_length: int = 2000
    indent_size: int = 2
    multiline: bool = True
    pretty_json: bool = True
    pretty_query_params: bool = True
    pretty_form_body: bool = True
    # Frames kept in the stack excerpt of an error block.
    stack_trace_depth: int = 5

    # --- correlation ------------------------------------------------------

    correlation_header_name: str = "X-Request-Id"
    context_key: str = "requestId"

    # --- masking ----------------------------------------------------------

    mask_sensitive: bool = True
    sensitive_keys: Tuple[str, ...] = ()
    mask_replacement: str = "****"

    # --- scope ------------------------------------------------------------

    # Ant-style globs; matching requests are not logged at all.
    excluded_paths: Tuple[str, ...] = ()
    logger_name: str = "httplog"

    @field_validator("max_body_length")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_body_length must be >= 0")
        return v

    @field_validator("indent_size")
    @classmethod
    def _indent_bounds(cls, v: int) -> int:
        if not 0 <= v <= 16:
            raise ValueError("indent_size must be within 0..16")
        return v

    @field_validator("stack_trace_depth")
    @classmethod
    def _stack_bounds(cls, v: int) -> int:
        return max(0, v)

    @field_validator("sensitive_keys", "excluded_paths", mode="before")
    @classmethod
    def _split_csv(cls, v: Any) -> Any:
        if isinstance(v, str):
            return tuple(p.strip() for p in v.split(",") if p.strip())
        return v

    @field_validator("correlation_header_name", "context_key")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #

    @property
    def indent(self) -> str:
        return " " * self.indent_size

    def masking_policy(self) -> MaskingPolicy:
        return MaskingPolicy.from_keys(
            self.sensitive_keys,
            enabled=self.mask_sensitive,
            replacement=self.mask_replacement,
        )


# ---------------------------------------------------------------------------
# Loading / merging
# ---------------------------------------------------------------------------


def load_properties(config_path: Optional[str] = None) -> LoggingProperties:
    """
    Load LoggingProperties from defaults, optional YAML, and environment.

    Priority:
      1. LoggingProperties defaults (in-code).
      2. YAML file given as ``config_path`` or named by HTTPLOG_CONFIG_PATH.
      3. Environment variables (HTTPLOG_<FIELD>).
    """
    merged: Dict[str, Any] = LoggingProperties().model_dump()

    path = config_path if config_path is not None else os.environ.get(_CONFIG_PATH_ENV, "").strip()
    yaml_doc = _load_yaml_mapping(path)
    if yaml_doc:
        tmp = dict(merged)
        tmp.update(yaml_doc)
        merged = LoggingProperties(**tmp).model_dump()  # rejects unknown keys

    for name, value in list(merged.items()):
        env_name = _ENV_PREFIX + name.upper()
        if isinstance(value, bool):
            merged[name] = _env_bool(env_name, value)
        elif isinstance(value, int):
            merged[name] = _env_int(env_name, value)
        elif isinstance(value, tuple):
            merged[name] = _env_list(env_name, value)
        elif isinstance(value, str):
            raw = os.environ.get(env_name)
            if raw is not None and raw.strip():
                merged[name] = raw.strip()

    return LoggingProperties(**merged)


@lru_cache()
def get_properties() -> LoggingProperties:
    return load_properties()
