"""
Safe sender routes.

Endpoints:
- GET /safe-senders - List the user's safe senders
- POST /safe-senders - Add an address or wildcard pattern
- DELETE /safe-senders/{safe_sender_id} - Remove one
"""

from datetime import datetime
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from sweeper.core.config import settings
from sweeper.core.database import get_db
from sweeper.models.user import User
from sweeper.modules.auth.dependencies import get_current_user
from sweeper.modules.safety.safe_senders import (
    list_safe_senders,
    add_safe_sender,
    remove_safe_sender,
)

router = APIRouter(prefix="/safe-senders", tags=["safe-senders"])


class SafeSenderCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email_address: str = Field(alias="emailAddress", max_length=320)


class SafeSenderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email_address: str
    added_at: datetime


class SafeSenderList(BaseModel):
    safe_senders: List[SafeSenderOut]
    count: int
    required: int


@router.get("", response_model=SafeSenderList)
async def get_safe_senders(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    safe_senders = await list_safe_senders(db, user.id)
    return SafeSenderList(
        safe_senders=[SafeSenderOut.model_validate(s) for s in safe_senders],
        count=len(safe_senders),
        required=settings.MIN_SAFE_SENDERS,
    )


@router.post("", response_model=SafeSenderOut, status_code=status.HTTP_201_CREATED)
async def create_safe_sender(
    body: SafeSenderCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    safe_sender = await add_safe_sender(db, user.id, body.email_address)
    return SafeSenderOut.model_validate(safe_sender)


@router.delete("/{safe_sender_id}")
async def delete_safe_sender(
    safe_sender_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await remove_safe_sender(db, user.id, safe_sender_id)
    return {"success": True}
