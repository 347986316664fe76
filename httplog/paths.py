# FILE: httplog/paths.py
from __future__ import annotations

import re
from typing import Iterable, List


def _segment_regex(segment: str) -> str:
    out = []
    for ch in segment:
        if ch == "*":
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(ch))
    return "".join(out)


def compile_glob(pattern: str) -> "re.Pattern[str]":
    """
    Compile an Ant-style path pattern.

    ``?`` matches one character, ``*`` any run of characters inside one
    segment, and ``**`` zero or more whole segments. A trailing slash on the
    path is tolerated.
    """
    segments = [s for s in pattern.strip().strip("/").split("/") if s]
    parts = ["^"]
    for seg in segments:
        if seg == "**":
            parts.append("(?:/[^/]+)*")
        else:
            parts.append("/" + _segment_regex(seg))
    parts.append("/?$")
    return re.compile("".join(parts))


class PathMatcher:
    def __init__(self, patterns: Iterable[str]):
        self._patterns: List["re.Pattern[str]"] = [compile_glob(p) for p in patterns if p and p.strip()]

    def __bool__(self) -> bool:
        return bool(self._patterns)

    def matches(self, path: str) -> bool:
        if not path.startswith("/"):
            path = "/" + path
        return any(p.match(path) for p in self._patterns)
