"""
driversign_compliance.db.repositories.verdicts

Repository for cached `VerdictRecord` entities.

Responsibilities:
- Store the verdict computed for (evidence digest, policy fingerprint).
- Return cached verdicts so re-runs and dispatch retries skip inspection.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from driversign_compliance.db.models import VerdictRecord


class VerdictRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, cache_key: str) -> VerdictRecord | None:
        stmt = select(VerdictRecord).where(VerdictRecord.cache_key == cache_key)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def upsert(
        self,
        *,
        cache_key: str,
        evidence_digest: str,
        policy_fingerprint: str,
        artifact_id: str,
        policy_version: str,
        path: str,
        compliant: bool,
        violated_rules: list[str],
        verdict: dict[str, Any],
        metadata_snapshot: dict[str, Any],
    ) -> VerdictRecord:
        existing = await self.get(cache_key)
        if existing is not None:
            # Same evidence under the same rules: only the observed path can differ.
            existing.path = path
            existing.verdict = verdict
            await self._session.flush()
            return existing

        rec = VerdictRecord(
            cache_key=cache_key,
            evidence_digest=evidence_digest,
            policy_fingerprint=policy_fingerprint,
            artifact_id=artifact_id,
            policy_version=policy_version,
            path=path,
            compliant=compliant,
            violated_rules=violated_rules,
            verdict=verdict,
            metadata_snapshot=metadata_snapshot,
        )
        self._session.add(rec)
        await self._session.flush()
        return rec

    async def list_for_artifact(self, artifact_id: str, *, limit: int = 50) -> list[VerdictRecord]:
        stmt = (
            select(VerdictRecord)
            .where(VerdictRecord.artifact_id == artifact_id)
            .order_by(desc(VerdictRecord.created_at))
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())
