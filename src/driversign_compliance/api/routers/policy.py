"""
driversign_compliance.api.routers.policy

Policy Store endpoints.

Responsibilities:
- Expose the active policy snapshot (version + table).
- Reload the policy document atomically; a bad document leaves the old one active.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from driversign_compliance.api.deps import policy_store_dep
from driversign_compliance.auth.deps import get_principal, require_roles
from driversign_compliance.auth.models import ROLE_POLICY_ADMIN, Principal
from driversign_compliance.observability.logging import get_logger
from driversign_compliance.policy.store import PolicyStore

router = APIRouter(prefix="/v1/policy", tags=["policy"])
log = get_logger(__name__)


class PolicyReloadRequest(BaseModel):
    path: str | None = Field(default=None, description="Defaults to the current source")


class PolicyReloadResponse(BaseModel):
    previous_version: str
    version: str
    fingerprint: str
    entries: int


@router.get("", dependencies=[Depends(require_roles(ROLE_POLICY_ADMIN))])
async def get_policy(store: PolicyStore = Depends(policy_store_dep)) -> dict[str, Any]:
    return store.snapshot().as_dict()


@router.post(
    "/reload",
    response_model=PolicyReloadResponse,
    dependencies=[Depends(require_roles(ROLE_POLICY_ADMIN))],
)
async def reload_policy(
    body: PolicyReloadRequest | None = None,
    principal: Principal = Depends(get_principal),
    store: PolicyStore = Depends(policy_store_dep),
) -> PolicyReloadResponse:
    previous = store.version
    # PolicyLoadError propagates to the app-level handler (400).
    fresh = store.reload(body.path if body is not None else None)
    log.info("policy_reload_requested", actor=principal.subject, version=fresh.version)
    return PolicyReloadResponse(
        previous_version=previous,
        version=fresh.version,
        fingerprint=fresh.fingerprint,
        entries=len(fresh.table),
    )
