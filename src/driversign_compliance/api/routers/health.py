"""
driversign_compliance.api.routers.health

Health and readiness endpoints.

Responsibilities:
- Provide liveness probe (`/healthz`).
- Provide readiness probe (`/readyz`): DB reachable and a policy loaded.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_503_SERVICE_UNAVAILABLE

from driversign_compliance.api.deps import db_session, policy_store_dep
from driversign_compliance.policy.store import PolicyStore

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(
    session: AsyncSession = Depends(db_session),
    store: PolicyStore = Depends(policy_store_dep),
) -> dict[str, str]:
    await session.execute(text("SELECT 1"))
    snapshot = store.snapshot()
    if not snapshot.table:
        # Every evaluation would fail closed; do not take traffic.
        raise HTTPException(status_code=HTTP_503_SERVICE_UNAVAILABLE, detail="No policy loaded")
    return {"status": "ready", "policy_version": snapshot.version}
