"""Chat-tip relay: prompt in, SSE frames out, one log record per session."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from ..infrastructure.log_store import CHAT_TIPS, LogStore
from ..observability.metrics import CHAT_TIP_FRAGMENTS, CHAT_TIP_SESSIONS, LOG_WRITE_FAILURES
from .detached import spawn_detached
from .generation_client import GenerationClient, GenerationEvent
from .streaming import RelaySession, StreamReframer

LOG = logging.getLogger("weathervis.relay")

EMPTY_PROMPT = "empty_prompt"
EMPTY_PROMPT_MESSAGE = "content is required"
# Seconds between disconnect checks while the upstream is silent
DISCONNECT_POLL_INTERVAL = 0.5

DisconnectProbe = Callable[[], Awaitable[bool]]


class EmptyPromptError(ValueError):
    """The request carried no usable prompt."""


def validate_prompt(content: Optional[str]) -> str:
    if content is None or not content.strip():
        raise EmptyPromptError(EMPTY_PROMPT_MESSAGE)
    return content


def build_log_record(session: RelaySession, place: Optional[str] = None) -> Dict[str, Any]:
    request: Dict[str, Any] = {"content": session.prompt}
    if place:
        request["place"] = place
    return {
        "createdAt": session.created_at,
        "latency_ms": session.latency_ms(),
        "request": request,
        "response": session.log_excerpt(),
    }


async def _write_log(log_store: LogStore, record: Dict[str, Any]) -> None:
    try:
        await log_store.insert(CHAT_TIPS, record)
    except Exception:
        LOG_WRITE_FAILURES.labels(collection=CHAT_TIPS).inc()
        raise


async def _next_event(events: AsyncIterator[GenerationEvent]) -> GenerationEvent:
    return await events.__anext__()


async def _until_disconnect(
    events: AsyncIterator[GenerationEvent],
    session: RelaySession,
    is_disconnected: Optional[DisconnectProbe],
    poll_interval: float = DISCONNECT_POLL_INTERVAL,
) -> AsyncIterator[GenerationEvent]:
    """Pass ``events`` through until the client goes away.

    The probe runs before every event and, while the upstream is silent (a
    model still loading, say), every ``poll_interval`` seconds. Owns
    ``events``: it is closed here however the relay ends.
    """

    async def gone() -> bool:
        if is_disconnected is None or not await is_disconnected():
            return False
        session.finish("disconnect")
        LOG.info("chat_tip_client_disconnected", extra={"latency_ms": session.latency_ms()})
        return True

    timeout = poll_interval if is_disconnected is not None else None
    pending: Optional["asyncio.Task[GenerationEvent]"] = None
    try:
        while True:
            pending = asyncio.ensure_future(_next_event(events))
            while not pending.done():
                await asyncio.wait({pending}, timeout=timeout)
                if not pending.done() and await gone():
                    return
            try:
                event = pending.result()
            except StopAsyncIteration:
                return
            if await gone():
                return
            yield event
    finally:
        if pending is not None and not pending.done():
            # Cancelling the read unwinds the upstream response inside the task.
            pending.cancel()
            await asyncio.wait({pending})
        await events.aclose()


async def relay_tip(
    content: Optional[str],
    *,
    generation: GenerationClient,
    log_store: LogStore,
    is_disconnected: Optional[DisconnectProbe] = None,
    place: Optional[str] = None,
    poll_interval: float = DISCONNECT_POLL_INTERVAL,
) -> AsyncIterator[str]:
    """Relay one chat-tip request as SSE frames.

    An empty prompt short-circuits with an ``empty_prompt`` error frame and
    ``[DONE]``; nothing is sent upstream and nothing is logged. Otherwise the
    upstream events are reframed until done, error or client disconnect, and
    a single ``chat_tips`` record is written in the background.
    """

    session = RelaySession(prompt=content or "")
    reframer = StreamReframer(session)
    session.mark_headers_sent()

    try:
        prompt = validate_prompt(content)
    except EmptyPromptError as exc:
        LOG.info("chat_tip_empty_prompt")
        for frame in (reframer.error(EMPTY_PROMPT, str(exc)), reframer.close(EMPTY_PROMPT)):
            if frame:
                yield frame
        CHAT_TIP_SESSIONS.labels(outcome=EMPTY_PROMPT).inc()
        return

    LOG.info("chat_tip_relay_start", extra={"prompt_chars": len(prompt), "model": generation.model})
    events = generation.stream(prompt)
    watched = _until_disconnect(events, session, is_disconnected, poll_interval)
    frames = reframer.frames(watched)
    try:
        async for frame in frames:
            yield frame
            if session.error is None and not session.terminal:
                CHAT_TIP_FRAGMENTS.inc()
    finally:
        session.finish("disconnect")
        CHAT_TIP_SESSIONS.labels(outcome=session.outcome or "unknown").inc()
        LOG.info(
            "chat_tip_relay_end",
            extra={
                "outcome": session.outcome,
                "latency_ms": session.latency_ms(),
                "response_chars": len(session.accumulated_text),
            },
        )
        spawn_detached(_write_log(log_store, build_log_record(session, place)), name="chat_tip_log")
        # Outermost first; ``watched`` closes ``events``, which tears down the
        # upstream response.
        await frames.aclose()
        await watched.aclose()
