# FILE: httplog/masking.py
from __future__ import annotations

import dataclasses
import datetime as _dt
import decimal
import enum
import json
import logging
import pathlib
import uuid
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel
from starlette.authentication import BaseUser
from starlette.datastructures import UploadFile
from starlette.requests import HTTPConnection
from starlette.responses import Response

_logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "…(truncated)"

# Nesting deeper than this is treated as unconvertible (covers cycles too).
_MAX_DEPTH = 32


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MaskingPolicy:
    """
    Which key names are sensitive and what replaces their values.

    Keys are stored lower-cased; matching is case-insensitive and applies to
    JSON field names, header names, query/form keys and argument names.
    """

    enabled: bool = True
    sensitive_keys: FrozenSet[str] = frozenset()
    replacement: str = "****"

    @classmethod
    def from_keys(
        cls,
        keys: Iterable[str],
        *,
        enabled: bool = True,
        replacement: str = "****",
    ) -> "MaskingPolicy":
        normalized = frozenset(k.strip().lower() for k in keys if k and k.strip())
        return cls(enabled=enabled, sensitive_keys=normalized, replacement=replacement)

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.sensitive_keys)

    def matches(self, key: Any) -> bool:
        if not self.active or not isinstance(key, str):
            return False
        return key.lower() in self.sensitive_keys


NO_MASKING = MaskingPolicy(enabled=False)


# ---------------------------------------------------------------------------
# Value -> tree conversion
# ---------------------------------------------------------------------------


class Unconvertible(Exception):
    """Raised when a value has no place in the closed set of conversions."""


def _bytes_descriptor(value: Any) -> Any:
    return {"type": "bytes", "size": len(value)}


def _upload_descriptor(value: UploadFile) -> Any:
    return {
        "type": "UploadFile",
        "filename": value.filename,
        "content_type": value.content_type,
        "size": value.size,
    }


def _principal_descriptor(value: BaseUser) -> Any:
    return {
        "type": type(value).__name__,
        "display_name": value.display_name,
        "is_authenticated": value.is_authenticated,
    }


def _connection_descriptor(value: HTTPConnection) -> Any:
    return {
        "type": type(value).__name__,
        "method": value.scope.get("method"),
        "path": value.scope.get("path"),
    }


def _response_descriptor(value: Response) -> Any:
    return {
        "type": type(value).__name__,
        "status": value.status_code,
        "media_type": value.media_type,
    }


def _stringify(value: Any) -> Any:
    if isinstance(value, (_dt.datetime, _dt.date, _dt.time)):
        return value.isoformat()
    return str(value)


# Checked in order; the first matching variant wins.
_DESCRIPTORS: Tuple[Tuple[Tuple[type, ...], Callable[[Any], Any]], ...] = (
    ((bytes, bytearray, memoryview), _bytes_descriptor),
    ((UploadFile,), _upload_descriptor),
    ((BaseUser,), _principal_descriptor),
    ((HTTPConnection,), _connection_descriptor),
    ((Response,), _response_descriptor),
    ((_dt.datetime, _dt.date, _dt.time, _dt.timedelta, uuid.UUID, decimal.Decimal, pathlib.PurePath), _stringify),
)


def _sorted_if_possible(items: List[Any]) -> List[Any]:
    try:
        return sorted(items)
    except TypeError:
        return items


def to_tree(value: Any, _depth: int = 0) -> Any:
    """
    Convert ``value`` into plain JSON nodes (dict/list/str/int/float/bool/None).

    Only a fixed set of shapes is understood: JSON scalars, enums, the
    descriptor types above, pydantic models, dataclass instances, mappings,
    sequences and sets. Anything else raises Unconvertible.
    """
    if _depth > _MAX_DEPTH:
        raise Unconvertible("nesting too deep")

    if isinstance(value, enum.Enum):
        return to_tree(value.value, _depth + 1)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value

    for types, convert in _DESCRIPTORS:
        if isinstance(value, types):
            return convert(value)

    if isinstance(value, BaseModel):
        return to_tree(value.model_dump(), _depth + 1)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_tree(getattr(value, f.name), _depth + 1) for f in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        return {str(k): to_tree(v, _depth + 1) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_tree(v, _depth + 1) for v in value]
    if isinstance(value, (set, frozenset)):
        return [to_tree(v, _depth + 1) for v in _sorted_if_possible(list(value))]

    raise Unconvertible(type(value).__name__)


# ---------------------------------------------------------------------------
# Masking
# ---------------------------------------------------------------------------


def mask_tree(node: Any, policy: MaskingPolicy) -> Any:
    """
    Return a copy of ``node`` with values at sensitive keys replaced.

    A matched field is replaced wholesale; nothing below it is visited.
    Arrays keep their length and are walked element by element.
    """
    if not policy.active:
        return node
    if isinstance(node, dict):
        out = {}
        for k, v in node.items():
            if policy.matches(k):
                out[k] = policy.replacement
            else:
                out[k] = mask_tree(v, policy)
        return out
    if isinstance(node, list):
        return [mask_tree(item, policy) for item in node]
    return node


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def dumps(tree: Any, indent: Optional[int] = 2) -> str:
    if indent is None:
        return json.dumps(tree, ensure_ascii=False, separators=(",", ":"))
    return json.dumps(tree, ensure_ascii=False, indent=indent)


def truncate(text: str, max_length: Optional[int]) -> str:
    if max_length is None or len(text) <= max_length:
        return text
    return text[:max_length] + TRUNCATION_MARKER


def looks_like_json(text: str) -> bool:
    stripped = text.strip()
    return bool(stripped) and stripped[0] in "{["


def parse_json(text: str) -> Tuple[bool, Any]:
    """Return (ok, tree). Malformed input is reported, not raised."""
    if not looks_like_json(text):
        return False, None
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


def _fallback_text(value: Any) -> str:
    try:
        return str(value)
    except Exception:
        return object.__repr__(value)


def render(
    value: Any,
    policy: MaskingPolicy = NO_MASKING,
    *,
    indent: Optional[int] = 2,
    max_length: Optional[int] = None,
) -> str:
    """
    Render ``value`` as masked, indented JSON text capped at ``max_length``.

    Strings that parse as a JSON object/array are treated as JSON; other
    strings are returned verbatim. Values outside the supported shapes fall
    back to their string form. Never raises.
    """
    try:
        if isinstance(value, str):
            ok, tree = parse_json(value)
            if not ok:
                return truncate(value, max_length)
        else:
            tree = to_tree(value)
        return truncate(dumps(mask_tree(tree, policy), indent), max_length)
    except Exception:
        _logger.debug("falling back to str() for %s", type(value).__name__, exc_info=True)
        return truncate(_fallback_text(value), max_length)
