"""
driversign_compliance.db.repositories.tickets

Repositories backing the in-process ticket and notification systems.

Responsibilities:
- Create at most one `Ticket` per Idempotency-Key and report whether it was new.
- Store `Notification` posts.
- List both per artifact for the internal read endpoints.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from driversign_compliance.db.models import Notification, Ticket


class TicketRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_idempotency_key(self, key: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.idempotency_key == key)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def create_once(
        self,
        *,
        idempotency_key: str,
        artifact_id: str,
        title: str,
        body: dict[str, Any],
    ) -> tuple[Ticket, bool]:
        """Returns (ticket, created). A repeated key returns the original ticket."""
        existing = await self.get_by_idempotency_key(idempotency_key)
        if existing is not None:
            return existing, False
        ticket = Ticket(
            idempotency_key=idempotency_key,
            artifact_id=artifact_id,
            title=title,
            body=body,
        )
        self._session.add(ticket)
        await self._session.flush()
        return ticket, True

    async def list_for_artifact(self, artifact_id: str) -> list[Ticket]:
        stmt = select(Ticket).where(Ticket.artifact_id == artifact_id).order_by(Ticket.created_at)
        return list((await self._session.execute(stmt)).scalars().all())


class NotificationRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self, *, artifact_id: str, channel: str, message: str, details: dict[str, Any]
    ) -> Notification:
        n = Notification(artifact_id=artifact_id, channel=channel, message=message, details=details)
        self._session.add(n)
        await self._session.flush()
        return n

    async def list_for_artifact(self, artifact_id: str) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.artifact_id == artifact_id)
            .order_by(Notification.created_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())
