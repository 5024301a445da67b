"""
driversign_compliance.api.routers.internal.systems.tickets

Ticket system endpoint (in-process stand-in for the organisation's tracker).

Responsibilities:
- Open a compliance ticket for a non-compliant artifact.
- Honour the `Idempotency-Key` header: a repeated key returns the original ticket.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from driversign_compliance.api.deps import db_session
from driversign_compliance.auth.deps import require_roles
from driversign_compliance.auth.models import ROLE_INTERNAL_SYSTEM
from driversign_compliance.db.repositories.tickets import TicketRepo

router = APIRouter(dependencies=[Depends(require_roles(ROLE_INTERNAL_SYSTEM))])


class TicketCreateRequest(BaseModel):
    artifact_id: str = Field(min_length=1, max_length=512)
    title: str = Field(min_length=1, max_length=256)
    body: dict[str, Any] = Field(default_factory=dict)


class TicketCreateResponse(BaseModel):
    ticket_id: uuid.UUID
    created: bool
    status: str


@router.post("", response_model=TicketCreateResponse)
async def open_ticket(
    body: TicketCreateRequest,
    idempotency_key: str = Header(alias="Idempotency-Key", min_length=1, max_length=64),
    session: AsyncSession = Depends(db_session),
) -> TicketCreateResponse:
    ticket, created = await TicketRepo(session).create_once(
        idempotency_key=idempotency_key,
        artifact_id=body.artifact_id,
        title=body.title,
        body=body.body,
    )
    await session.commit()
    return TicketCreateResponse(ticket_id=ticket.id, created=created, status=ticket.status)


class TicketItem(BaseModel):
    ticket_id: uuid.UUID
    title: str
    status: str


@router.get("/{artifact_id}", response_model=list[TicketItem])
async def list_tickets(
    artifact_id: str,
    session: AsyncSession = Depends(db_session),
) -> list[TicketItem]:
    tickets = await TicketRepo(session).list_for_artifact(artifact_id)
    return [TicketItem(ticket_id=t.id, title=t.title, status=t.status) for t in tickets]
