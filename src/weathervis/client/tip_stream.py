"""Async consumer for the chat-tip SSE relay.

This is the counterpart of ``POST /api/chat``: it reads the response body as
it arrives, decodes ``data:`` frames across read boundaries and keeps a
bounded display string up to date for whatever renders it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..services.generation_client import LineBuffer

LOG = logging.getLogger("weathervis.client")

DONE = "[DONE]"
DEFAULT_MAX_DISPLAY = 240
DEFAULT_PATH = "/api/chat"


class SSEDecoder:
    """Extract ``data:`` payloads from an SSE byte stream fed in pieces."""

    def __init__(self) -> None:
        self._lines = LineBuffer()

    def feed(self, chunk: bytes) -> List[str]:
        return self._payloads(self._lines.feed(chunk))

    def flush(self) -> List[str]:
        return self._payloads(self._lines.flush())

    @staticmethod
    def _payloads(lines: List[str]) -> List[str]:
        out: List[str] = []
        for line in lines:
            if line.startswith("data:"):
                value = line[5:]
                # A single space after the colon is framing, the rest is payload.
                out.append(value[1:] if value.startswith(" ") else value)
        return out


class TipStreamConsumer:
    """Stream one tip into ``display``.

    ``on_update`` receives the display string after every change. ``cancel``
    stops all further updates and aborts the in-flight read; it is safe to
    call at any time, including after the stream has finished.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        on_update: Optional[Callable[[str], None]] = None,
        fallback: Optional[Callable[[], str]] = None,
        max_display: int = DEFAULT_MAX_DISPLAY,
        path: str = DEFAULT_PATH,
    ) -> None:
        self.url = base_url.rstrip("/") + path
        self.max_display = max_display
        self.display = ""
        self.fragments: List[str] = []
        self.error: Optional[Dict[str, Any]] = None
        self.done = False
        self.cancelled = False
        self.used_fallback = False
        self._client = client
        self._on_update = on_update
        self._fallback = fallback
        self._reader: Optional["asyncio.Task[None]"] = None

    @property
    def text(self) -> str:
        return "".join(self.fragments)

    def cancel(self) -> None:
        self.cancelled = True
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()

    async def run(self, content: str, place: Optional[str] = None) -> str:
        self._reader = asyncio.ensure_future(self._read(content, place))
        try:
            await self._reader
        except asyncio.CancelledError:
            # Only a cancel() of our own reader is absorbed.
            if not (self.cancelled and self._reader.cancelled()):
                raise
            LOG.debug("tip_stream_cancelled", extra={"fragments": len(self.fragments)})
        if not self.cancelled and self.error is not None and not self.display and self._fallback is not None:
            self.used_fallback = True
            self._set_display(self._fallback())
        return self.display

    async def _read(self, content: str, place: Optional[str]) -> None:
        body: Dict[str, Any] = {"content": content}
        if place:
            body["place"] = place
        http = self._client or httpx.AsyncClient(timeout=httpx.Timeout(None, connect=5.0))
        decoder = SSEDecoder()
        try:
            async with http.stream("POST", self.url, json=body, headers={"Accept": "text/event-stream"}) as resp:
                if resp.status_code >= 400:
                    self._record_error({"error": "http_error", "message": f"HTTP {resp.status_code}"})
                    return
                async for chunk in resp.aiter_bytes():
                    for payload in decoder.feed(chunk):
                        if self._handle(payload):
                            return
                for payload in decoder.flush():
                    if self._handle(payload):
                        return
        except httpx.HTTPError as exc:
            self._record_error({"error": "network_error", "message": str(exc) or type(exc).__name__})
        finally:
            if self._client is None:
                await http.aclose()

    def _handle(self, payload: str) -> bool:
        """Apply one payload; True means stop reading."""
        if self.cancelled:
            return True
        if payload == DONE:
            self.done = True
            return True
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self._append(payload)
            return False
        if not isinstance(data, dict):
            self._append(payload)
        elif "error" in data:
            self._record_error(data)
        elif data.get("response"):
            self._append(str(data["response"]))
        return False

    def _append(self, fragment: str) -> None:
        if self.cancelled:
            return
        self.fragments.append(fragment)
        self._set_display((self.display + fragment)[: self.max_display])

    def _record_error(self, payload: Dict[str, Any]) -> None:
        if self.cancelled:
            return
        self.error = dict(payload)
        LOG.warning("tip_stream_error", extra={"error": payload.get("error"), "err": payload.get("message")})

    def _set_display(self, value: str) -> None:
        if self.cancelled or value == self.display:
            return
        self.display = value
        if self._on_update is not None:
            self._on_update(value)


async def stream_tip(base_url: str, content: str, **kwargs: Any) -> str:
    consumer = TipStreamConsumer(base_url, **kwargs)
    return await consumer.run(content)
