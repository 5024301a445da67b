"""
driversign_compliance.dispatch.actions

The on_noncompliant action handlers.

Responsibilities:
- quarantine: move the artifact (and its signing companions) out of the release path
- notify: post a notification to the signing team channel
- ticket: open one remediation ticket per (artifact, violated rule set)

Each handler performs exactly one attempt and returns an external reference;
retry and idempotence are the dispatcher's job.
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import Protocol

import httpx

from driversign_compliance.errors import UnexpectedResponse
from driversign_compliance.evaluation.evaluator import Verdict
from driversign_compliance.governance_clients.internal_http import InternalApiClient
from driversign_compliance.inspection.inspector import companion_files
from driversign_compliance.observability.logging import get_logger

log = get_logger(__name__)

ACTION_QUARANTINE = "quarantine"
ACTION_NOTIFY = "notify"
ACTION_TICKET = "ticket"


class ActionHandler(Protocol):
    name: str
    # Errors worth another attempt, and errors no retry can fix.
    retry_on: tuple[type[BaseException], ...]
    give_up_on: tuple[type[BaseException], ...]

    async def __call__(self, verdict: Verdict) -> str: ...


def _summary(verdict: Verdict) -> str:
    rules = ", ".join(verdict.violated_rules) or "none"
    return f"{verdict.path}: non-compliant ({rules}) under policy {verdict.policy_version}"


class QuarantineAction:
    name = ACTION_QUARANTINE
    retry_on: tuple[type[BaseException], ...] = (OSError,)
    give_up_on: tuple[type[BaseException], ...] = (FileNotFoundError,)

    def __init__(self, quarantine_dir: str | Path) -> None:
        self._root = Path(quarantine_dir)

    def destination(self, verdict: Verdict) -> Path:
        digest = verdict.artifact_id.split(":", 1)[-1]
        return self._root / digest[:12] / Path(verdict.path).name

    def _move(self, verdict: Verdict) -> str:
        source = Path(verdict.path)
        dest = self.destination(verdict)
        if not source.exists() and dest.exists():
            # Moved by an earlier attempt whose ledger write did not land.
            return str(dest)
        if not source.exists():
            raise FileNotFoundError(f"artifact vanished before quarantine: {source}")
        dest.parent.mkdir(parents=True, exist_ok=True)
        companions = companion_files(source)
        shutil.move(str(source), str(dest))
        for extra in companions:
            shutil.move(str(extra), str(dest.parent / extra.name))
        return str(dest)

    async def __call__(self, verdict: Verdict) -> str:
        return await asyncio.to_thread(self._move, verdict)


class NotifyAction:
    name = ACTION_NOTIFY
    retry_on: tuple[type[BaseException], ...] = (httpx.HTTPError,)
    give_up_on: tuple[type[BaseException], ...] = (UnexpectedResponse,)

    def __init__(self, client: InternalApiClient, *, channel: str = "driver-signing") -> None:
        self._client = client
        self._channel = channel

    async def __call__(self, verdict: Verdict) -> str:
        ref = await self._client.notify(
            artifact_id=verdict.artifact_id,
            channel=self._channel,
            message=_summary(verdict),
            details=verdict.as_dict(),
        )
        return ref.notification_id


class TicketAction:
    name = ACTION_TICKET
    retry_on: tuple[type[BaseException], ...] = (httpx.HTTPError,)
    give_up_on: tuple[type[BaseException], ...] = (UnexpectedResponse,)

    def __init__(self, client: InternalApiClient) -> None:
        self._client = client

    async def __call__(self, verdict: Verdict) -> str:
        ref = await self._client.open_ticket(
            idempotency_key=verdict.dedupe_key,
            artifact_id=verdict.artifact_id,
            title=f"Driver signing violation: {Path(verdict.path).name}",
            body=verdict.as_dict(),
        )
        if not ref.created:
            # The ticket system already had this Idempotency-Key.
            log.info("ticket_reused", ticket_id=ref.ticket_id, artifact_id=verdict.artifact_id)
        return ref.ticket_id


def default_handlers(*, client: InternalApiClient, quarantine_dir: str | Path) -> dict[str, ActionHandler]:
    return {
        ACTION_QUARANTINE: QuarantineAction(quarantine_dir),
        ACTION_NOTIFY: NotifyAction(client),
        ACTION_TICKET: TicketAction(client),
    }


# --- Module Notes -----------------------------------------------------------
# 4xx responses from the ticket system are httpx.HTTPStatusError and therefore retried;
# the ticket system's Idempotency-Key handling keeps that safe.
