"""Streaming client for the local Ollama-style generation service.

``POST {base_url}/api/generate`` with ``"stream": true`` answers with one
JSON object per line. Chunks coming off the socket do not respect line
boundaries, so bytes go through :class:`LineBuffer` and only complete lines
are parsed.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, AsyncIterator, List, Optional

import httpx

LOG = logging.getLogger("weathervis.llm")

DEFAULT_BASE_URL = "http://127.0.0.1:11434"
DEFAULT_MODEL = "llama3.2"
_CONNECT_TIMEOUT = float(os.getenv("WEATHERVIS_LLM_CONNECT_TIMEOUT", "5"))

UPSTREAM_ERROR = "upstream_error"
STREAM_ERROR = "stream_error"


class UpstreamConnectError(Exception):
    """The generation service is unreachable or rejected the request."""


class UpstreamStreamError(Exception):
    """The generation stream broke after it had started."""


@dataclass
class GenerationEvent:
    response_text: Optional[str] = None
    is_done: bool = False
    raw: Any = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error_code is not None

    @classmethod
    def from_line(cls, line: str) -> "GenerationEvent":
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            return cls(response_text=line, raw=line)
        if not isinstance(data, dict):
            # Valid JSON but not an event object; pass it through as text.
            return cls(response_text=line, raw=line)
        if data.get("error"):
            # Ollama reports failures after the 200 as an in-band error line.
            return cls(error_code=STREAM_ERROR, error_message=str(data["error"]), raw=data)
        text = data.get("response")
        return cls(
            response_text=None if text is None else str(text),
            is_done=bool(data.get("done")),
            raw=data,
        )

    @classmethod
    def failure(cls, code: str, exc: BaseException) -> "GenerationEvent":
        return cls(error_code=code, error_message=str(exc) or type(exc).__name__, raw=exc)


class LineBuffer:
    """Residual-buffer state machine for newline-delimited byte streams.

    ``feed`` appends a chunk, splits off every complete line and retains the
    trailing partial line. ``flush`` returns what is left once the stream ends.
    Buffering raw bytes keeps multi-byte UTF-8 sequences split across chunks
    intact.
    """

    def __init__(self) -> None:
        self._residual = b""

    @property
    def residual(self) -> bytes:
        return self._residual

    def feed(self, chunk: bytes) -> List[str]:
        if not chunk:
            return []
        *complete, self._residual = (self._residual + chunk).split(b"\n")
        return [self._decode(line) for line in complete if line.strip()]

    def flush(self) -> List[str]:
        rest, self._residual = self._residual, b""
        return [self._decode(rest)] if rest.strip() else []

    @staticmethod
    def _decode(line: bytes) -> str:
        return line.decode("utf-8", errors="replace").rstrip("\r")


def _error_detail(body: str) -> str:
    """Prefer the ``error`` field of a JSON error body over the raw text."""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body[:200]
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])[:200]
    return body[:200]


class GenerationClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        connect_timeout: Optional[float] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("OLLAMA_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.model = model or os.getenv("OLLAMA_MODEL") or DEFAULT_MODEL
        # Generation may legitimately run long: only connecting is bounded.
        self._timeout = httpx.Timeout(None, connect=connect_timeout or _CONNECT_TIMEOUT)
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def stream(self, prompt: str) -> AsyncIterator[GenerationEvent]:
        """Yield events for ``prompt`` until ``done``, exhaustion or failure.

        Failures never propagate: the sequence ends with one event carrying
        ``upstream_error`` (could not connect, or non-2xx) or ``stream_error``
        (broke mid-stream, or sent an ``{"error": ...}`` line). Closing the
        generator closes the upstream response.
        """

        payload = {"model": self.model, "prompt": prompt, "stream": True}
        LOG.debug("llm_stream_open", extra={"model": self.model, "base_url": self.base_url})
        try:
            async with self._http().stream(
                "POST", f"{self.base_url}/api/generate", json=payload, timeout=self._timeout
            ) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    raise UpstreamConnectError(f"HTTP {resp.status_code}: {_error_detail(body)}".rstrip(": "))
                buffer = LineBuffer()
                try:
                    async for chunk in resp.aiter_bytes():
                        for line in buffer.feed(chunk):
                            event = GenerationEvent.from_line(line)
                            if event.is_error:
                                LOG.warning(
                                    "llm_stream_error_reported",
                                    extra={"base_url": self.base_url, "err": event.error_message},
                                )
                            yield event
                            if event.is_done or event.is_error:
                                return
                except httpx.HTTPError as exc:
                    raise UpstreamStreamError(str(exc) or type(exc).__name__) from exc
                for line in buffer.flush():
                    yield GenerationEvent.from_line(line)
        except UpstreamStreamError as exc:
            LOG.warning("llm_stream_broken", extra={"base_url": self.base_url, "err": str(exc)})
            yield GenerationEvent.failure(STREAM_ERROR, exc)
        except UpstreamConnectError as exc:
            LOG.warning("llm_stream_rejected", extra={"base_url": self.base_url, "err": str(exc)})
            yield GenerationEvent.failure(UPSTREAM_ERROR, exc)
        except httpx.HTTPError as exc:
            LOG.warning("llm_stream_unreachable", extra={"base_url": self.base_url, "err": str(exc)})
            yield GenerationEvent.failure(UPSTREAM_ERROR, UpstreamConnectError(str(exc) or type(exc).__name__))
