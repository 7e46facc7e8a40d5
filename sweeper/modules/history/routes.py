"""
History routes.

Endpoints:
- GET /history - Most recent email_history rows, newest first
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict

from sweeper.modules.auth.dependencies import get_history_recorder
from sweeper.modules.history.recorder import HistoryRecorder

router = APIRouter(prefix="/history", tags=["history"])


class HistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email_id: str
    thread_id: Optional[str] = None
    action: str
    action_type: str
    details: dict
    created_at: datetime


@router.get("", response_model=List[HistoryItem])
async def get_history(
    limit: int = Query(100, ge=1, le=500),
    recorder: HistoryRecorder = Depends(get_history_recorder),
):
    rows = await recorder.get_history(limit=limit)
    return [HistoryItem.model_validate(row) for row in rows]
