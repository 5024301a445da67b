"""
driversign_compliance.api.routers.evaluations

Public endpoints for compliance operators.

Responsibilities:
- Evaluate a batch of artifact paths and return the JSON compliance report.
- Read back cached verdicts, the dispatch ledger and the audit trail per artifact.
- Replay failed on_noncompliant actions.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.status import HTTP_404_NOT_FOUND

from driversign_compliance.api.deps import (
    db_session,
    policy_store_dep,
    sessionmaker_from_app,
    settings_dep,
)
from driversign_compliance.auth.deps import get_principal, require_roles
from driversign_compliance.auth.models import ROLE_COMPLIANCE_OPERATOR, Principal
from driversign_compliance.db.repositories.audit import AuditRepo
from driversign_compliance.db.repositories.dispatches import DispatchRepo
from driversign_compliance.db.repositories.verdicts import VerdictRepo
from driversign_compliance.policy.store import PolicyStore
from driversign_compliance.reporting.report import ComplianceReport, SideEffectEntry
from driversign_compliance.services.compliance_service import (
    ComplianceService,
    build_compliance_service,
)
from driversign_compliance.settings import Settings

router = APIRouter(
    prefix="/v1",
    tags=["evaluations"],
    dependencies=[Depends(require_roles(ROLE_COMPLIANCE_OPERATOR))],
)


class EvaluationRequest(BaseModel):
    paths: list[str] = Field(min_length=1, max_length=1000)
    dispatch: bool = True


class VerdictHistoryItem(BaseModel):
    policy_version: str
    policy_fingerprint: str
    evidence_digest: str
    path: str
    compliant: bool
    violated_rules: list[str]
    verdict: dict[str, Any]


class LedgerItem(BaseModel):
    action: str
    status: str
    attempts: int
    reference: str | None
    last_error: str | None
    policy_version: str


class AuditItem(BaseModel):
    event_type: str
    actor: str
    details: dict[str, Any]
    created_at: str


class ArtifactVerdictsResponse(BaseModel):
    artifact_id: str
    verdicts: list[VerdictHistoryItem] = Field(default_factory=list)
    dispatches: list[LedgerItem] = Field(default_factory=list)
    audit: list[AuditItem] = Field(default_factory=list)


class RedispatchResponse(BaseModel):
    attempted: int
    failed: int
    side_effects: list[SideEffectEntry] = Field(default_factory=list)


@asynccontextmanager
async def _service(
    request: Request,
    *,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    policy_store: PolicyStore,
    actor: str,
) -> AsyncIterator[ComplianceService]:
    # ASGITransport lets ticket/notify actions hit the internal systems in-process.
    transport = httpx.ASGITransport(app=request.app)
    async with httpx.AsyncClient(
        transport=transport, base_url=str(request.base_url).rstrip("/")
    ) as http:
        yield build_compliance_service(
            settings=settings,
            session_factory=session_factory,
            policy_store=policy_store,
            http=http,
            actor=actor,
        )


@router.post("/evaluations", response_model=ComplianceReport)
async def create_evaluation(
    request: Request,
    body: EvaluationRequest,
    principal: Principal = Depends(get_principal),
    settings: Settings = Depends(settings_dep),
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
    policy_store: PolicyStore = Depends(policy_store_dep),
) -> ComplianceReport:
    async with _service(
        request,
        settings=settings,
        session_factory=session_factory,
        policy_store=policy_store,
        actor=principal.subject,
    ) as svc:
        return await svc.evaluate_paths(body.paths, dispatch=body.dispatch)


@router.get("/verdicts/{artifact_id}", response_model=ArtifactVerdictsResponse)
async def get_verdicts(
    artifact_id: str,
    session: AsyncSession = Depends(db_session),
) -> ArtifactVerdictsResponse:
    records = await VerdictRepo(session).list_for_artifact(artifact_id)
    if not records:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="No verdicts for artifact")
    ledger = await DispatchRepo(session).list_for_artifact(artifact_id)
    events = await AuditRepo(session).list_for_artifact(artifact_id)
    return ArtifactVerdictsResponse(
        artifact_id=artifact_id,
        verdicts=[
            VerdictHistoryItem(
                policy_version=r.policy_version,
                policy_fingerprint=r.policy_fingerprint,
                evidence_digest=r.evidence_digest,
                path=r.path,
                compliant=r.compliant,
                violated_rules=list(r.violated_rules or []),
                verdict=r.verdict or {},
            )
            for r in records
        ],
        dispatches=[
            LedgerItem(
                action=d.action,
                status=d.status.value,
                attempts=d.attempts,
                reference=d.reference,
                last_error=d.last_error,
                policy_version=d.policy_version,
            )
            for d in ledger
        ],
        audit=[
            AuditItem(
                event_type=e.event_type,
                actor=e.actor,
                details=e.details or {},
                created_at=e.created_at.isoformat(),
            )
            for e in events
        ],
    )


@router.post("/dispatches/retry", response_model=RedispatchResponse)
async def retry_failed_dispatches(
    request: Request,
    principal: Principal = Depends(get_principal),
    settings: Settings = Depends(settings_dep),
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
    policy_store: PolicyStore = Depends(policy_store_dep),
) -> RedispatchResponse:
    async with _service(
        request,
        settings=settings,
        session_factory=session_factory,
        policy_store=policy_store,
        actor=principal.subject,
    ) as svc:
        effects = await svc.redispatch_failed()
    entries = [
        SideEffectEntry(
            action=e.action,
            status=e.status,
            attempts=e.attempts,
            reference=e.reference,
            error=e.error,
        )
        for e in effects
    ]
    return RedispatchResponse(
        attempted=len(entries),
        failed=sum(1 for e in entries if e.status == "failed"),
        side_effects=entries,
    )


# --- Module Notes -----------------------------------------------------------
# Paths are resolved on the server's filesystem; the API never accepts uploads.
