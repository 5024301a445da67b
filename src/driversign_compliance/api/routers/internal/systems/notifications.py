from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from driversign_compliance.api.deps import db_session
from driversign_compliance.auth.deps import require_roles
from driversign_compliance.auth.models import ROLE_INTERNAL_SYSTEM
from driversign_compliance.db.repositories.tickets import NotificationRepo
from driversign_compliance.observability.logging import get_logger

router = APIRouter(dependencies=[Depends(require_roles(ROLE_INTERNAL_SYSTEM))])
log = get_logger(__name__)


class NotificationRequest(BaseModel):
    artifact_id: str = Field(min_length=1, max_length=512)
    channel: str = Field(default="driver-signing", min_length=1, max_length=64)
    message: str = Field(min_length=1)
    details: dict[str, Any] = Field(default_factory=dict)


class NotificationResponse(BaseModel):
    notification_id: uuid.UUID


@router.post("", response_model=NotificationResponse)
async def post_notification(
    body: NotificationRequest,
    session: AsyncSession = Depends(db_session),
) -> NotificationResponse:
    n = await NotificationRepo(session).add(
        artifact_id=body.artifact_id,
        channel=body.channel,
        message=body.message,
        details=body.details,
    )
    await session.commit()
    # Stand-in for a chat/email fan-out.
    log.info("notification_posted", channel=n.channel, artifact_id=n.artifact_id)
    return NotificationResponse(notification_id=n.id)
