"""
driversign_compliance.dispatch.dispatcher

Action Dispatcher: execute a verdict's on_noncompliant actions exactly once.

Responsibilities:
- Skip actions the ledger already records as done for the same
  (artifact_id, violated rule set); dispatching a verdict twice opens one ticket.
- Serialise dispatch per artifact id.
- Retry transient failures with exponential backoff; record exhausted actions as
  failed so they can be replayed from the cached verdict.
- Never let one action's error escape: undeclared handler errors are recorded as
  failed too, so the rest of the batch still runs and gets reported.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any, Literal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from driversign_compliance.db.models import DispatchStatus
from driversign_compliance.db.repositories.audit import AuditRepo
from driversign_compliance.db.repositories.dispatches import DispatchRepo
from driversign_compliance.dispatch.actions import ActionHandler
from driversign_compliance.dispatch.retry import RetryExhausted, Sleep, retry_async
from driversign_compliance.errors import DispatchError
from driversign_compliance.evaluation.evaluator import Verdict
from driversign_compliance.observability.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SideEffect:
    action: str
    artifact_id: str
    status: Literal["done", "failed"]
    attempts: int
    reference: str | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _describe(error: BaseException) -> str:
    # str(KeyError("x")) is only "'x'".
    if isinstance(error, DispatchError):
        return error.detail
    return f"{type(error).__name__}: {error}"


class ActionDispatcher:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        handlers: Mapping[str, ActionHandler],
        max_attempts: int = 4,
        backoff_seconds: float = 0.5,
        backoff_max_seconds: float = 8.0,
        actor: str = "dispatcher",
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._handlers = dict(handlers)
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._backoff_max_seconds = backoff_max_seconds
        self._actor = actor
        self._sleep = sleep
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, artifact_id: str) -> asyncio.Lock:
        lock = self._locks.get(artifact_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[artifact_id] = lock
        return lock

    async def dispatch(self, verdict: Verdict) -> list[SideEffect]:
        """
        Returns the side effects actually attempted by this call. Actions already
        completed for this verdict are skipped and do not appear in the result.
        """

        if verdict.compliant or not verdict.actions:
            return []

        lock = self._lock_for(verdict.artifact_id)
        async with lock:
            effects: list[SideEffect] = []
            for action in verdict.actions:
                effect = await self._dispatch_one(verdict, action)
                if effect is not None:
                    effects.append(effect)
            return effects

    async def _already_done(self, dedupe_key: str, action: str) -> bool:
        async with self._session_factory() as session:
            rec = await DispatchRepo(session).get(dedupe_key=dedupe_key, action=action)
            return rec is not None and rec.status == DispatchStatus.done

    async def _dispatch_one(self, verdict: Verdict, action: str) -> SideEffect | None:
        dedupe_key = verdict.dedupe_key
        if await self._already_done(dedupe_key, action):
            log.info(
                "action_skipped_duplicate",
                action=action,
                artifact_id=verdict.artifact_id,
                dedupe_key=dedupe_key,
            )
            return None

        # The ledger session is not held open across the action; retries sleep.
        try:
            reference, attempts = await self._run(verdict, action)
            effect = SideEffect(
                action=action,
                artifact_id=verdict.artifact_id,
                status="done",
                attempts=attempts,
                reference=reference,
            )
            log.info(
                "action_dispatched",
                action=action,
                artifact_id=verdict.artifact_id,
                reference=reference,
                attempts=attempts,
            )
        except DispatchError as e:
            effect = SideEffect(
                action=action,
                artifact_id=verdict.artifact_id,
                status="failed",
                attempts=e.attempts,
                error=e.detail,
            )
            log.error(
                "action_failed",
                action=action,
                artifact_id=verdict.artifact_id,
                attempts=e.attempts,
                error=e.detail,
            )

        await self._record(verdict, dedupe_key, effect)
        return effect

    async def _run(self, verdict: Verdict, action: str) -> tuple[str, int]:
        handler = self._handlers.get(action)
        if handler is None:
            raise DispatchError(
                action=action,
                artifact_id=verdict.artifact_id,
                attempts=0,
                detail="no handler configured",
            )
        try:
            return await retry_async(
                lambda: handler(verdict),
                attempts=self._max_attempts,
                base_delay=self._backoff_seconds,
                max_delay=self._backoff_max_seconds,
                retry_on=handler.retry_on,
                give_up_on=handler.give_up_on,
                sleep=self._sleep,
                label=action,
            )
        except RetryExhausted as e:
            raise DispatchError(
                action=action,
                artifact_id=verdict.artifact_id,
                attempts=e.attempts,
                detail=_describe(e.last_error),
            ) from e

    async def _record(self, verdict: Verdict, dedupe_key: str, effect: SideEffect) -> None:
        async with self._session_factory() as session:
            await DispatchRepo(session).record(
                dedupe_key=dedupe_key,
                action=effect.action,
                artifact_id=verdict.artifact_id,
                policy_version=verdict.policy_version,
                verdict_key=verdict.cache_key,
                status=DispatchStatus.done if effect.status == "done" else DispatchStatus.failed,
                attempts=effect.attempts,
                reference=effect.reference,
                last_error=effect.error,
            )
            await AuditRepo(session).add(
                artifact_id=verdict.artifact_id,
                actor=self._actor,
                event_type="ACTION_DONE" if effect.status == "done" else "ACTION_FAILED",
                details={"dedupe_key": dedupe_key, **effect.as_dict()},
            )
            await session.commit()


# --- Module Notes -----------------------------------------------------------
# Per-artifact locks only serialise within one process; across processes the
# (dedupe_key, action) unique constraint in `dispatches` rejects a second insert.
