from __future__ import annotations

from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class ChatTipRequest(BaseModel):
    # Left optional so an empty prompt is answered in-band rather than with a 422.
    content: Optional[str] = None
    place: Optional[str] = None


class LogRecordList(BaseModel):
    collection: str
    records: List[Dict[str, Any]]
