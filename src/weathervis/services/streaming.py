"""Server-Sent Event framing for relayed generation streams."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from .generation_client import GenerationEvent

DONE_FRAME = "data: [DONE]\n\n"
LOG_EXCERPT_LIMIT = 2000


def sse_frame(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


class SessionState(str, Enum):
    IDLE = "idle"
    HEADERS_SENT = "headers_sent"
    STREAMING = "streaming"
    TERMINAL = "terminal"


@dataclass
class RelaySession:
    """State of one in-flight chat-tip request.

    ``accumulated_text`` only grows, and only until the session is terminal.
    ``finish`` is the single way into ``TERMINAL`` and succeeds once.
    """

    prompt: str
    started_at: float = field(default_factory=time.perf_counter)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    state: SessionState = SessionState.IDLE
    outcome: Optional[str] = None
    error: Optional[Dict[str, str]] = None
    _parts: List[str] = field(default_factory=list, repr=False)

    @property
    def terminal(self) -> bool:
        return self.state is SessionState.TERMINAL

    @property
    def accumulated_text(self) -> str:
        return "".join(self._parts)

    def mark_headers_sent(self) -> None:
        if self.state is SessionState.IDLE:
            self.state = SessionState.HEADERS_SENT

    def mark_streaming(self) -> None:
        if self.state in (SessionState.IDLE, SessionState.HEADERS_SENT):
            self.state = SessionState.STREAMING

    def append(self, fragment: str) -> None:
        if self.terminal:
            raise RuntimeError("cannot append to a terminal relay session")
        self._parts.append(fragment)

    def finish(self, outcome: str) -> bool:
        if self.terminal:
            return False
        self.state = SessionState.TERMINAL
        self.outcome = outcome
        return True

    def latency_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)

    def log_excerpt(self) -> str:
        return self.accumulated_text.strip()[:LOG_EXCERPT_LIMIT]


class StreamReframer:
    """Turn generation events into SSE frames for one relay session.

    Every produced frame is final: nothing is retracted, and after ``close``
    (or any other transition to terminal) no further frame is produced.
    """

    def __init__(self, session: RelaySession) -> None:
        self.session = session

    def fragment(self, text: str) -> Optional[str]:
        if self.session.terminal:
            return None
        self.session.mark_streaming()
        self.session.append(text)
        return sse_frame({"response": text})

    def error(self, code: str, message: Optional[str] = None) -> Optional[str]:
        if self.session.terminal or self.session.error is not None:
            return None
        self.session.mark_streaming()
        payload = {"error": code}
        if message:
            payload["message"] = message
        self.session.error = payload
        return sse_frame(payload)

    def close(self, outcome: str = "done") -> Optional[str]:
        if not self.session.finish(outcome):
            return None
        return DONE_FRAME

    async def frames(self, events: AsyncIterator[GenerationEvent]) -> AsyncIterator[str]:
        outcome = "done"
        async for event in events:
            if self.session.terminal:
                break
            self.session.mark_streaming()
            if event.is_error:
                outcome = "error"
                frame = self.error(event.error_code or "stream_error", event.error_message)
                if frame:
                    yield frame
                break
            if event.response_text:
                frame = self.fragment(event.response_text)
                if frame:
                    yield frame
            if event.is_done:
                break
        closing = self.close(outcome)
        if closing:
            yield closing
