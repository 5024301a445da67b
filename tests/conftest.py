"""
tests.conftest

Shared fixtures: isolated settings, a per-test SQLite database and a known policy.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio
import yaml
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from driversign_compliance.db.session import create_sessionmaker, engine_scope
from driversign_compliance.policy.store import PolicyStore
from driversign_compliance.settings import Settings

from builders import POLICY


@pytest.fixture
def policy_file(tmp_path: Path) -> Path:
    path = tmp_path / "policy.yaml"
    path.write_text(yaml.safe_dump(POLICY), encoding="utf-8")
    return path


@pytest.fixture
def settings(tmp_path: Path, policy_file: Path) -> Settings:
    return Settings(
        env="test",
        log_level="WARNING",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'dsc.db'}",
        policy_path=str(policy_file),
        quarantine_dir=str(tmp_path / "quarantine"),
        internal_api_base_url="http://internal.test",
        dispatch_backoff_seconds=0.0,
        dispatch_backoff_max_seconds=0.0,
    )


@pytest.fixture
def policy_store(policy_file: Path) -> PolicyStore:
    return PolicyStore.from_file(policy_file)


@pytest.fixture
def artifacts_dir(tmp_path: Path) -> Path:
    path = tmp_path / "artifacts"
    path.mkdir()
    return path


@pytest_asyncio.fixture
async def session_factory(settings: Settings) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    async with engine_scope(settings) as engine:
        yield create_sessionmaker(engine)
