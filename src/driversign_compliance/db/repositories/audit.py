"""
driversign_compliance.db.repositories.audit

Append-only audit trail per artifact.

Event types written by the service and dispatcher:
ARTIFACT_EVALUATED, ARTIFACT_UNREADABLE, ACTION_DONE, ACTION_FAILED.
"""

from __future__ import annotations

from collections.abc import Collection
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from driversign_compliance.db.models import AuditEvent


class AuditRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        artifact_id: str,
        actor: str,
        event_type: str,
        details: dict[str, Any],
    ) -> AuditEvent:
        ev = AuditEvent(artifact_id=artifact_id, actor=actor, event_type=event_type, details=details)
        self._session.add(ev)
        await self._session.flush()
        return ev

    async def list_for_artifact(
        self,
        artifact_id: str,
        *,
        event_types: Collection[str] | None = None,
        limit: int = 200,
    ) -> list[AuditEvent]:
        """Oldest first, i.e. in the order things happened to the artifact."""
        stmt = select(AuditEvent).where(AuditEvent.artifact_id == artifact_id)
        if event_types:
            stmt = stmt.where(AuditEvent.event_type.in_(list(event_types)))
        stmt = stmt.order_by(AuditEvent.created_at, AuditEvent.id).limit(limit)
        return list((await self._session.execute(stmt)).scalars().all())
