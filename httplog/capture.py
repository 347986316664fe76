# FILE: httplog/capture.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from starlette.types import Message, Receive, Scope, Send

from .classify import ContentKind, classify, parse_charset, resolve_charset
from .kv import KeyValueBlock

# Scope key under which the active wrapper is registered.
SCOPE_KEY = "httplog.capture"

# Content types streamed straight through instead of being held.
_PASSTHROUGH_TYPES = ("text/event-stream",)


@dataclass(frozen=True)
class CapturedBody:
    content: bytes = b""
    content_type: Optional[str] = None
    charset: Optional[str] = None

    def __len__(self) -> int:
        return len(self.content)

    def text(self) -> str:
        return self.content.decode(resolve_charset(self.charset), errors="replace")


def _header_value(raw: List[Tuple[bytes, bytes]], name: bytes) -> Optional[str]:
    for k, v in raw:
        if k.lower() == name:
            return v.decode("latin-1")
    return None


def set_header(message: Message, name: str, value: str) -> Message:
    """Copy of a ``http.response.start`` message with ``name`` set to ``value``."""
    key = name.lower().encode("latin-1")
    headers = [(k, v) for k, v in message.get("headers", []) if k.lower() != key]
    headers.append((key, value.encode("latin-1")))
    return {**message, "headers": headers}


class BodyCapture:
    """
    Buffers the request and response bodies of one ASGI request.

    ``receive`` hands every message to the application unchanged while
    keeping a copy of the request bytes. ``send`` holds the response start
    and body until :meth:`flush` writes them to the real ``send`` in one go.
    Both sides can be inspected any number of times in between.

    Multipart request bodies are passed along but never copied.
    ``response_headers`` are set on the response start as soon as it is
    sent, so they reach the client on held and streamed responses alike.
    """

    def __init__(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        response_headers: Sequence[Tuple[str, str]] = (),
    ):
        self._scope = scope
        self._receive = receive
        self._send = send
        self._extra_headers = tuple(response_headers)

        self._request_type = _header_value(scope.get("headers", []), b"content-type")
        self._keep_request = classify(self._request_type) is not ContentKind.MULTIPART

        self._request_chunks: List[bytes] = []
        self._start: Optional[Message] = None
        self._response_chunks: List[bytes] = []
        self._trailing: List[Message] = []
        self._passthrough = False
        self._flushed = False

        scope[SCOPE_KEY] = self

    @classmethod
    def from_scope(cls, scope: Scope) -> Optional["BodyCapture"]:
        existing = scope.get(SCOPE_KEY)
        return existing if isinstance(existing, cls) else None

    # ------------- ASGI callables -------------

    async def receive(self) -> Message:
        message = await self._receive()
        if message["type"] == "http.request" and self._keep_request:
            chunk = message.get("body", b"")
            if chunk:
                self._request_chunks.append(bytes(chunk))
        return message

    async def send(self, message: Message) -> None:
        if self._passthrough or self._flushed:
            await self._send(message)
            return

        mtype = message["type"]
        if mtype == "http.response.start":
            for name, value in self._extra_headers:
                message = set_header(message, name, value)
            self._start = message
            ctype = (_header_value(message.get("headers", []), b"content-type") or "").lower()
            if ctype.startswith(_PASSTHROUGH_TYPES):
                self._passthrough = True
                await self._send(message)
            return
        if mtype == "http.response.body":
            chunk = message.get("body", b"")
            if chunk:
                self._response_chunks.append(bytes(chunk))
            return
        self._trailing.append(message)

    # ------------- inspection -------------

    @property
    def response_started(self) -> bool:
        return self._start is not None

    @property
    def passthrough(self) -> bool:
        return self._passthrough

    @property
    def status(self) -> Optional[int]:
        return None if self._start is None else int(self._start.get("status", 200))

    @property
    def response_headers(self) -> KeyValueBlock:
        if self._start is None:
            return KeyValueBlock()
        return KeyValueBlock.from_raw_headers(self._start.get("headers", []))

    def request_body(self) -> CapturedBody:
        ctype = self._request_type
        return CapturedBody(b"".join(self._request_chunks), ctype, parse_charset(ctype))

    def response_body(self) -> CapturedBody:
        if self._start is None:
            return CapturedBody()
        ctype = _header_value(self._start.get("headers", []), b"content-type")
        if self._passthrough:
            return CapturedBody(b"", ctype, parse_charset(ctype))
        return CapturedBody(b"".join(self._response_chunks), ctype, parse_charset(ctype))

    # ------------- output -------------

    async def flush(self) -> None:
        """
        Write the held response to the real ``send``.

        Runs at most once; later calls and calls for a response that never
        started do nothing.
        """
        if self._flushed or self._passthrough or self._start is None:
            self._flushed = True
            return
        self._flushed = True
        await self._send(self._start)
        await self._send(
            {
                "type": "http.response.body",
                "body": b"".join(self._response_chunks),
                "more_body": False,
            }
        )
        for message in self._trailing:
            await self._send(message)
