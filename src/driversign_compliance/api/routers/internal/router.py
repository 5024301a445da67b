"""
driversign_compliance.api.routers.internal.router

Internal systems router aggregator.

Responsibilities:
- Mount per-system internal routers under `/internal/v1`.
- Present a stable surface for the dispatcher's ticket and notify actions.
"""

from __future__ import annotations

from fastapi import APIRouter

from driversign_compliance.api.routers.internal.systems import notifications, tickets

router = APIRouter(prefix="/internal/v1", tags=["internal"])

## Each included router is protected by RBAC role `internal_system`.
router.include_router(tickets.router, prefix="/tickets")
router.include_router(notifications.router, prefix="/notifications")
