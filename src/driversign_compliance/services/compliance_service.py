"""
driversign_compliance.services.compliance_service

Batch compliance evaluation (transaction + persistence owner).

Responsibilities:
- Evaluate each artifact independently: digest, cached verdict or inspection,
  policy lookup, evaluation, dispatch.
- Pin one policy snapshot per batch so a concurrent reload cannot split a report.
- Cache verdicts by (evidence digest, policy fingerprint) and write the audit trail.
  Evidence covers the sidecar and detached signatures, so adding signing evidence
  or editing rules under an unchanged version label re-evaluates.
- Replay failed actions from cached verdicts without re-inspecting artifacts.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from pathlib import Path

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from driversign_compliance.db.repositories.audit import AuditRepo
from driversign_compliance.db.repositories.dispatches import DispatchRepo
from driversign_compliance.db.repositories.verdicts import VerdictRepo
from driversign_compliance.dispatch.actions import default_handlers
from driversign_compliance.dispatch.dispatcher import ActionDispatcher, SideEffect
from driversign_compliance.errors import NotFoundError, UnreadableArtifact
from driversign_compliance.evaluation.evaluator import (
    Verdict,
    evaluate,
    evaluate_missing_policy,
    evaluate_unreadable,
    verdict_cache_key,
)
from driversign_compliance.governance_clients.internal_http import InternalApiClient
from driversign_compliance.inspection.inspector import artifact_digest, evidence_digest, inspect
from driversign_compliance.observability.logging import artifact_context, get_logger
from driversign_compliance.policy.models import PolicySnapshot
from driversign_compliance.policy.store import PolicyStore
from driversign_compliance.reporting.report import (
    ComplianceReport,
    VerdictEntry,
    build_report,
    verdict_entry,
)
from driversign_compliance.settings import Settings

log = get_logger(__name__)


class ComplianceService:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        policy_store: PolicyStore,
        dispatcher: ActionDispatcher | None = None,
        actor: str = "cli",
    ) -> None:
        self._session_factory = session_factory
        self._policy_store = policy_store
        self._dispatcher = dispatcher
        self._actor = actor

    async def evaluate_paths(
        self, paths: Iterable[str | Path], *, dispatch: bool = True
    ) -> ComplianceReport:
        snapshot = self._policy_store.snapshot()
        entries: list[VerdictEntry] = []
        for path in paths:
            entries.append(await self.evaluate_path(path, snapshot=snapshot, dispatch=dispatch))

        report = build_report(entries, policy_version=snapshot.version)
        log.info(
            "batch_evaluated",
            policy_version=report.policy_version,
            total=report.total,
            signed=report.signed,
            compliant=report.compliant,
            errors=report.errors,
            signed_percentage=report.signed_percentage,
        )
        return report

    async def evaluate_path(
        self,
        path: str | Path,
        *,
        snapshot: PolicySnapshot | None = None,
        dispatch: bool = True,
    ) -> VerdictEntry:
        snapshot = snapshot or self._policy_store.snapshot()
        with artifact_context(path=str(path)):
            verdict, cached = await self._verdict_for(Path(path), snapshot)
            effects: list[SideEffect] = []
            if dispatch and self._dispatcher is not None:
                effects = await self._dispatcher.dispatch(verdict)
            return verdict_entry(verdict, effects=effects, cached=cached)

    async def _verdict_for(self, path: Path, snapshot: PolicySnapshot) -> tuple[Verdict, bool]:
        try:
            artifact_id = artifact_digest(path)
            evidence = evidence_digest(path)
        except UnreadableArtifact as e:
            return await self._unreadable(e, artifact_id=None, snapshot=snapshot), False

        cache_key = verdict_cache_key(evidence, snapshot.fingerprint)
        async with self._session_factory() as session:
            rec = await VerdictRepo(session).get(cache_key)
        if rec is not None:
            # Identical evidence under identical rules: reuse, but act on the current path.
            verdict = dataclasses.replace(Verdict.from_dict(rec.verdict), path=str(path))
            log.info(
                "verdict_cache_hit",
                artifact_id=artifact_id,
                policy_version=snapshot.version,
                policy_fingerprint=snapshot.fingerprint,
            )
            return verdict, True

        try:
            metadata = inspect(path)
        except UnreadableArtifact as e:
            return await self._unreadable(e, artifact_id=artifact_id, snapshot=snapshot), False

        try:
            policy = snapshot.lookup(metadata.platform, metadata.driver_class)
            verdict = evaluate(metadata, policy)
        except NotFoundError as e:
            verdict = evaluate_missing_policy(
                metadata, e, policy_version=snapshot.version, actions=snapshot.default_actions
            )

        verdict = dataclasses.replace(verdict, cache_key=cache_key)
        await self._persist(verdict, cache_key=cache_key, evidence=evidence, snapshot=snapshot)
        return verdict, False

    async def _unreadable(
        self, error: UnreadableArtifact, *, artifact_id: str | None, snapshot: PolicySnapshot
    ) -> Verdict:
        log.error("artifact_unreadable", path=error.path, reason=error.reason)
        verdict = evaluate_unreadable(
            error, artifact_id=artifact_id, policy_version=snapshot.version
        )
        async with self._session_factory() as session:
            await AuditRepo(session).add(
                artifact_id=verdict.artifact_id,
                actor=self._actor,
                event_type="ARTIFACT_UNREADABLE",
                details={"path": error.path, "reason": error.reason},
            )
            await session.commit()
        return verdict

    async def _persist(
        self, verdict: Verdict, *, cache_key: str, evidence: str, snapshot: PolicySnapshot
    ) -> None:
        async with self._session_factory() as session:
            await VerdictRepo(session).upsert(
                cache_key=cache_key,
                evidence_digest=evidence,
                policy_fingerprint=snapshot.fingerprint,
                artifact_id=verdict.artifact_id,
                policy_version=verdict.policy_version,
                path=verdict.path,
                compliant=verdict.compliant,
                violated_rules=list(verdict.violated_rules),
                verdict=verdict.as_dict(),
                metadata_snapshot=verdict.metadata,
            )
            await AuditRepo(session).add(
                artifact_id=verdict.artifact_id,
                actor=self._actor,
                event_type="ARTIFACT_EVALUATED",
                details={
                    "path": verdict.path,
                    "compliant": verdict.compliant,
                    "violated_rules": list(verdict.violated_rules),
                    "policy_version": verdict.policy_version,
                },
            )
            await session.commit()

    async def redispatch_failed(self) -> list[SideEffect]:
        """
        Replay every failed action from its cached verdict. Inspection is not re-run:
        the verdict that produced the failed action is exactly what gets dispatched.
        """

        if self._dispatcher is None:
            return []

        async with self._session_factory() as session:
            failed = await DispatchRepo(session).list_failed()
            pending: dict[str, Verdict] = {}
            for rec in failed:
                if rec.verdict_key is not None and rec.verdict_key in pending:
                    continue
                cached = (
                    await VerdictRepo(session).get(rec.verdict_key)
                    if rec.verdict_key is not None
                    else None
                )
                if cached is None:
                    log.warning(
                        "redispatch_verdict_missing",
                        artifact_id=rec.artifact_id,
                        policy_version=rec.policy_version,
                        action=rec.action,
                    )
                    continue
                pending[cached.cache_key] = Verdict.from_dict(cached.verdict)

        effects: list[SideEffect] = []
        for verdict in pending.values():
            with artifact_context(path=verdict.path, artifact_id=verdict.artifact_id):
                effects.extend(await self._dispatcher.dispatch(verdict))
        log.info("redispatch_completed", verdicts=len(pending), effects=len(effects))
        return effects


def build_compliance_service(
    *,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    policy_store: PolicyStore,
    http: httpx.AsyncClient,
    actor: str,
) -> ComplianceService:
    client = InternalApiClient(settings=settings, http=http)
    dispatcher = ActionDispatcher(
        session_factory=session_factory,
        handlers=default_handlers(client=client, quarantine_dir=settings.quarantine_dir),
        max_attempts=settings.dispatch_max_attempts,
        backoff_seconds=settings.dispatch_backoff_seconds,
        backoff_max_seconds=settings.dispatch_backoff_max_seconds,
        actor=actor,
    )
    return ComplianceService(
        session_factory=session_factory,
        policy_store=policy_store,
        dispatcher=dispatcher,
        actor=actor,
    )


# --- Module Notes -----------------------------------------------------------
# Verdicts are cached before dispatch, so a crash mid-dispatch never forces a
# second inspection; the ledger then tells the next run which actions remain.
