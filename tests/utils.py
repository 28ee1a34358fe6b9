from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Iterable, List, Optional

import httpx

from src.weathervis.infrastructure.log_store import PersistenceWriteError
from src.weathervis.services.generation_client import GenerationClient


class ChunkStream(httpx.AsyncByteStream):
    """Async body that hands out pre-cut chunks and records being closed."""

    def __init__(
        self,
        chunks: Iterable[bytes],
        *,
        fail_after: Optional[int] = None,
        first_delay: float = 0.0,
    ) -> None:
        self.chunks = list(chunks)
        self.fail_after = fail_after
        self.first_delay = first_delay
        self.sent = 0
        self.closed = False

    async def __aiter__(self):
        if self.first_delay:
            await asyncio.sleep(self.first_delay)
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise httpx.ReadError("connection reset by peer")
            await asyncio.sleep(0)
            self.sent += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class FakeOllama:
    """MockTransport handler standing in for ``/api/generate``."""

    def __init__(
        self,
        chunks: Iterable[bytes] = (),
        *,
        status_code: int = 200,
        fail_after: Optional[int] = None,
        first_delay: float = 0.0,
        connect_error: bool = False,
    ) -> None:
        self.stream = ChunkStream(chunks, fail_after=fail_after, first_delay=first_delay)
        self.status_code = status_code
        self.connect_error = connect_error
        self.requests: List[Dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.connect_error:
            raise httpx.ConnectError("connection refused", request=request)
        self.requests.append({"url": str(request.url), "json": json.loads(request.content)})
        return httpx.Response(self.status_code, stream=self.stream)

    def client(self, model: str = "test-model") -> GenerationClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(self))
        return GenerationClient("http://ollama.test", model, client=http)


def ndjson(*objects: Any) -> bytes:
    return b"".join(json.dumps(obj).encode("utf-8") + b"\n" for obj in objects)


def fragment_chunks(*fragments: str, done: bool = True) -> List[bytes]:
    chunks = [ndjson({"response": text, "done": False}) for text in fragments]
    if done:
        chunks.append(ndjson({"response": "", "done": True}))
    return chunks


def parse_frames(body: str) -> List[str]:
    """Split an SSE body into its ``data:`` payloads, in order."""
    return [block[len("data: "):] for block in body.split("\n\n") if block.startswith("data: ")]


def payload_texts(payloads: Iterable[str]) -> str:
    out = []
    for payload in payloads:
        if payload == "[DONE]":
            continue
        data = json.loads(payload)
        if "response" in data:
            out.append(data["response"])
    return "".join(out)


class FailingLogStore:
    def __init__(self) -> None:
        self.attempts = 0

    async def insert(self, collection: str, record: Dict[str, Any]) -> None:
        self.attempts += 1
        raise PersistenceWriteError("log sink unavailable")

    async def list_recent(self, collection: str, limit: int = 20) -> List[Dict[str, Any]]:
        return []

    async def close(self) -> None:
        return None
