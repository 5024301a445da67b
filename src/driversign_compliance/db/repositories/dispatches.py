"""
driversign_compliance.db.repositories.dispatches

Repository for the dispatch ledger (`DispatchRecord`).

Responsibilities:
- Record the outcome of each (dedupe_key, action) pair.
- Answer "was this action already taken for this verdict?" for idempotent dispatch.
- List failed actions for replay.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from driversign_compliance.db.models import DispatchRecord, DispatchStatus


class DispatchRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, *, dedupe_key: str, action: str) -> DispatchRecord | None:
        stmt = select(DispatchRecord).where(
            DispatchRecord.dedupe_key == dedupe_key,
            DispatchRecord.action == action,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def record(
        self,
        *,
        dedupe_key: str,
        action: str,
        artifact_id: str,
        policy_version: str,
        status: DispatchStatus,
        verdict_key: str | None = None,
        attempts: int,
        reference: str | None = None,
        last_error: str | None = None,
    ) -> DispatchRecord:
        rec = await self.get(dedupe_key=dedupe_key, action=action)
        if rec is None:
            rec = DispatchRecord(
                dedupe_key=dedupe_key,
                action=action,
                artifact_id=artifact_id,
                policy_version=policy_version,
                verdict_key=verdict_key,
                status=status,
                attempts=attempts,
                reference=reference,
                last_error=last_error,
            )
            self._session.add(rec)
        else:
            rec.status = status
            rec.verdict_key = verdict_key or rec.verdict_key
            rec.attempts = rec.attempts + attempts
            rec.reference = reference
            rec.last_error = last_error
        await self._session.flush()
        return rec

    async def list_failed(self, *, limit: int = 500) -> list[DispatchRecord]:
        stmt = (
            select(DispatchRecord)
            .where(DispatchRecord.status == DispatchStatus.failed)
            .order_by(DispatchRecord.created_at)
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def list_for_artifact(self, artifact_id: str) -> list[DispatchRecord]:
        stmt = (
            select(DispatchRecord)
            .where(DispatchRecord.artifact_id == artifact_id)
            .order_by(DispatchRecord.created_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())


# --- Module Notes -----------------------------------------------------------
# `attempts` accumulates across replays so the ledger shows total effort per action.
