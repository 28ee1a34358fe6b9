from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ...domain.chat_models import LogRecordList
from ...infrastructure.log_store import COLLECTIONS, LogStore
from ...services.detached import pending_count
from ..deps import get_log_store

router = APIRouter(prefix="/diag", tags=["diagnostics"])


@router.get("/llm")
async def diag_llm(request: Request):
    generation = request.app.state.generation_client
    return {
        "provider": "ollama",
        "base_url": generation.base_url,
        "model": generation.model,
        "pending_log_writes": pending_count(),
    }


@router.get("/logs/{collection}", response_model=LogRecordList)
async def recent_logs(
    collection: str,
    limit: int = Query(20, ge=1, le=200),
    log_store: LogStore = Depends(get_log_store),
) -> LogRecordList:
    if collection not in COLLECTIONS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown log collection")
    records = await log_store.list_recent(collection, limit=limit)
    return LogRecordList(collection=collection, records=records)
