# FILE: httplog/classify.py
from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from .kv import KeyValueBlock, parse_query
from .masking import MaskingPolicy, dumps, mask_tree, parse_json, truncate

if TYPE_CHECKING:  # pragma: no cover
    from .capture import CapturedBody
    from .config import LoggingProperties

_logger = logging.getLogger(__name__)

DEFAULT_CHARSET = "utf-8"
MULTIPART_PLACEHOLDER = "[multipart] (files/parts omitted)"


class ContentKind(str, Enum):
    JSON = "json"
    FORM_URLENCODED = "form"
    MULTIPART = "multipart"
    OPAQUE = "opaque"


def classify(content_type: Optional[str]) -> ContentKind:
    if not content_type:
        return ContentKind.OPAQUE
    lower = content_type.lower()
    media = lower.split(";", 1)[0].strip()
    if "application/json" in lower or media.endswith("+json"):
        return ContentKind.JSON
    if media.startswith("application/x-www-form-urlencoded"):
        return ContentKind.FORM_URLENCODED
    if media.startswith("multipart/"):
        return ContentKind.MULTIPART
    return ContentKind.OPAQUE


def parse_charset(content_type: Optional[str]) -> Optional[str]:
    """Extract the ``charset`` parameter of a Content-Type value, if any."""
    if not content_type:
        return None
    for param in content_type.split(";")[1:]:
        name, sep, value = param.partition("=")
        if sep and name.strip().lower() == "charset":
            value = value.strip().strip('"').strip("'")
            return value or None
    return None


def resolve_charset(name: Optional[str]) -> str:
    """Return a usable codec name; unknown or missing charsets give UTF-8."""
    if not name or not name.strip():
        return DEFAULT_CHARSET
    try:
        return codecs.lookup(name.strip()).name
    except LookupError:
        return DEFAULT_CHARSET


def is_text_body(text: Optional[str]) -> bool:
    if text is None:
        return False
    for ch in text:
        code = ord(ch)
        if (code < 0x20 or 0x7F <= code <= 0x9F) and not ch.isspace():
            return False
    return True


@dataclass(frozen=True)
class RenderedBody:
    """Display form of one captured body."""

    kind: ContentKind
    text: str = ""
    form: Optional[KeyValueBlock] = None

    @property
    def empty(self) -> bool:
        return not self.text and not self.form


def render_json_text(
    text: str,
    policy: MaskingPolicy,
    *,
    indent: Optional[int],
    max_length: Optional[int],
) -> str:
    """Masked JSON when ``text`` parses, the raw text otherwise."""
    ok, tree = parse_json(text)
    if not ok:
        return truncate(text, max_length)
    return truncate(dumps(mask_tree(tree, policy), indent), max_length)


def render_body(
    captured: "CapturedBody",
    properties: "LoggingProperties",
    policy: MaskingPolicy,
    *,
    compact: bool = False,
) -> RenderedBody:
    """
    Decide how a captured body is shown.

    JSON is masked and pretty-printed (raw text if it does not parse), form
    bodies become a KeyValueBlock, multipart bodies are never decoded, and
    anything else is shown only when it looks like text. Never raises.
    """
    kind = classify(captured.content_type)
    try:
        if kind is ContentKind.MULTIPART:
            return RenderedBody(kind, MULTIPART_PLACEHOLDER)
        if not captured.content:
            return RenderedBody(kind)

        charset = resolve_charset(captured.charset)
        text = captured.content.decode(charset, errors="replace")
        cap = properties.max_body_length

        if kind is ContentKind.JSON:
            indent = None if compact or not properties.pretty_json else properties.indent_size
            return RenderedBody(kind, render_json_text(text, policy, indent=indent, max_length=cap))

        if kind is ContentKind.FORM_URLENCODED:
            if properties.pretty_form_body or compact:
                return RenderedBody(kind, form=parse_query(text, charset))
            # Raw form text still goes through key masking.
            raw = parse_query(text, charset)
            if any(policy.matches(k) for k in raw.keys()):
                return RenderedBody(kind, truncate(raw.to_raw(policy), cap))
            return RenderedBody(kind, truncate(text, cap))

        if not is_text_body(text):
            return RenderedBody(kind)
        return RenderedBody(kind, truncate(text, cap))
    except Exception:
        _logger.debug("body rendering failed for %s", captured.content_type, exc_info=True)
        return RenderedBody(kind)
