# FILE: httplog/kv.py
from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional, Tuple
from urllib.parse import parse_qsl

from .masking import NO_MASKING, MaskingPolicy


class KeyValueBlock:
    """
    Ordered multi-map of string keys to string values.

    Repeated keys accumulate their values (``tag=a&tag=b`` gives
    ``tag: [a, b]``); keys keep the order of their first occurrence and none
    is ever dropped. Used for query strings, form bodies and headers.
    """

    __slots__ = ("_data",)

    def __init__(self, pairs: Optional[Iterable[Tuple[str, str]]] = None):
        self._data: Dict[str, List[str]] = {}
        for k, v in pairs or ():
            self.add(k, v)

    @classmethod
    def from_raw_headers(cls, raw: Iterable[Tuple[bytes, bytes]]) -> "KeyValueBlock":
        return cls((k.decode("latin-1"), v.decode("latin-1")) for k, v in raw or ())

    def add(self, key: str, value: str) -> None:
        self._data.setdefault(key, []).append(value)

    def get(self, key: str) -> List[str]:
        return list(self._data.get(key, ()))

    def keys(self) -> List[str]:
        return list(self._data)

    def items(self) -> Iterator[Tuple[str, List[str]]]:
        for k, vs in self._data.items():
            yield k, list(vs)

    def __len__(self) -> int:
        return len(self._data)

    def __bool__(self) -> bool:
        return bool(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyValueBlock):
            return NotImplemented
        return list(self._data.items()) == list(other._data.items())

    def __repr__(self) -> str:
        return f"KeyValueBlock({self._data!r})"

    # ---- rendering ---------------------------------------------------- #

    def _masked(self, key: str, values: List[str], policy: MaskingPolicy) -> List[str]:
        if policy.matches(key):
            return [policy.replacement for _ in values]
        return values

    def to_dict(self, policy: MaskingPolicy = NO_MASKING) -> Dict[str, List[str]]:
        return {k: self._masked(k, vs, policy) for k, vs in self._data.items()}

    def to_compact(self, policy: MaskingPolicy = NO_MASKING) -> Dict[str, object]:
        """Like to_dict, but single values are not wrapped in a list."""
        return {k: vs[0] if len(vs) == 1 else vs for k, vs in self.to_dict(policy).items()}

    def to_raw(self, policy: MaskingPolicy = NO_MASKING) -> str:
        """Decoded ``k=v&k=v`` form with sensitive values masked."""
        return "&".join(f"{k}={v}" for k, vs in self.to_dict(policy).items() for v in vs)

    def format_block(
        self,
        indent: str = "  ",
        policy: MaskingPolicy = NO_MASKING,
        *,
        join_values: bool = False,
    ) -> str:
        """
        Render one ``- key: value`` line per key.

        Several values print as ``[a, b]``, or as ``a, b`` when
        ``join_values`` is set (header style). An empty block renders as
        ``(empty)``. The result always ends with a newline.
        """
        if not self._data:
            return "(empty)\n"
        lines = []
        for key, values in self._data.items():
            shown = self._masked(key, values, policy)
            if not shown:
                rendered = ""
            elif len(shown) == 1:
                rendered = shown[0]
            elif join_values:
                rendered = ", ".join(shown)
            else:
                rendered = "[" + ", ".join(shown) + "]"
            lines.append(f"{indent}- {key}: {rendered}")
        return "\n".join(lines) + "\n"


def parse_query(query: Optional[str], charset: str = "utf-8") -> KeyValueBlock:
    """
    Decode a query string or url-encoded form body.

    ``+`` decodes to a space, undecodable bytes become replacement
    characters, and a key without ``=`` maps to an empty value.
    """
    if not query:
        return KeyValueBlock()
    pairs = parse_qsl(query, keep_blank_values=True, encoding=charset, errors="replace")
    return KeyValueBlock(pairs)
