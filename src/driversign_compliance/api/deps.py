"""
driversign_compliance.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for settings, DB sessions and the policy store.
- Encapsulate app.state access patterns (settings/engine/sessionmaker/policy store).
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from driversign_compliance.policy.store import PolicyStore
from driversign_compliance.settings import Settings


def settings_dep(request: Request) -> Settings:
    # The app factory pins its Settings on app.state; tests pass their own instance.
    return request.app.state.settings  # type: ignore[attr-defined]


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    # Created in the lifespan handler of `driversign_compliance.api.app.create_app`.
    return request.app.state.sessionmaker  # type: ignore[attr-defined]


def policy_store_dep(request: Request) -> PolicyStore:
    return request.app.state.policy_store  # type: ignore[attr-defined]


async def db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    # Request-scoped DB session. Commit/rollback is managed explicitly by handlers/services.
    async with session_factory() as session:
        yield session
