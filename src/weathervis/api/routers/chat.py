from __future__ import annotations

from typing import Optional
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from ...domain.chat_models import ChatTipRequest
from ...infrastructure.log_store import LogStore
from ...services.generation_client import GenerationClient
from ...services.tip_relay import relay_tip
from ..deps import get_generation_client, get_log_store

router = APIRouter(prefix="/chat", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("", response_class=StreamingResponse)
async def stream_chat_tip(
    request: Request,
    req: Optional[ChatTipRequest] = None,
    log_store: LogStore = Depends(get_log_store),
    generation: GenerationClient = Depends(get_generation_client),
) -> StreamingResponse:
    """Relay a generated weather tip as Server-Sent Events.

    Always answers 200 with ``text/event-stream``; failures arrive in-band as
    an ``{"error": ...}`` frame, and the stream always ends with ``[DONE]``.
    """

    frames = relay_tip(
        req.content if req else None,
        generation=generation,
        log_store=log_store,
        is_disconnected=request.is_disconnected,
        place=req.place if req else None,
    )
    return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)
