"""
tests.test_dispatcher

Action Dispatcher behaviour.

Responsibilities:
- Idempotent dispatch: a verdict dispatched twice acts once.
- Bounded retry with exponential backoff; exhausted actions are recorded as failed.
- Quarantine and ticket actions against real files and a mocked ticket system.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from pathlib import Path

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from driversign_compliance.db.models import DispatchStatus
from driversign_compliance.db.repositories.audit import AuditRepo
from driversign_compliance.db.repositories.dispatches import DispatchRepo
from driversign_compliance.dispatch.actions import QuarantineAction, TicketAction
from driversign_compliance.dispatch.dispatcher import ActionDispatcher
from driversign_compliance.dispatch.retry import RetryExhausted, backoff_delay, retry_async
from driversign_compliance.errors import UnexpectedResponse
from driversign_compliance.evaluation.evaluator import Verdict
from driversign_compliance.governance_clients.internal_http import InternalApiClient
from driversign_compliance.settings import Settings

from builders import RecordingAction, SleepRecorder


def _verdict(path: str = "/drivers/contoso.sys", rules: tuple[str, ...] = ("must_sign",)) -> Verdict:
    return Verdict(
        artifact_id="sha256:" + "cd" * 32,
        path=path,
        compliant=False,
        violated_rules=rules,
        policy_version="2026.10",
        platform="windows",
        driver_class="kernel",
        actions=("notify", "ticket"),
    )


def _dispatcher(
    session_factory: async_sessionmaker[AsyncSession],
    handlers: dict[str, object],
    sleep: SleepRecorder | None = None,
    *,
    max_attempts: int = 4,
) -> ActionDispatcher:
    return ActionDispatcher(
        session_factory=session_factory,
        handlers=handlers,  # type: ignore[arg-type]
        max_attempts=max_attempts,
        backoff_seconds=0.5,
        backoff_max_seconds=8.0,
        sleep=sleep or SleepRecorder(),
    )


def test_backoff_doubles_and_caps() -> None:
    delays = [backoff_delay(n, base=0.5, cap=3.0) for n in range(1, 6)]
    assert delays == [0.5, 1.0, 2.0, 3.0, 3.0]


@pytest.mark.asyncio
async def test_retry_async_gives_up_immediately_on_give_up_errors() -> None:
    calls = 0

    async def gone() -> str:
        nonlocal calls
        calls += 1
        raise FileNotFoundError("moved")

    with pytest.raises(RetryExhausted) as excinfo:
        await retry_async(
            gone,
            attempts=5,
            base_delay=0.0,
            max_delay=0.0,
            retry_on=(OSError,),
            give_up_on=(FileNotFoundError,),
            sleep=SleepRecorder(),
        )
    assert calls == 1
    assert excinfo.value.attempts == 1



@pytest.mark.asyncio
async def test_retry_async_stops_on_undeclared_errors() -> None:
    calls = 0

    async def malformed() -> str:
        nonlocal calls
        calls += 1
        raise KeyError("ticket_id")

    sleep = SleepRecorder()
    with pytest.raises(RetryExhausted) as excinfo:
        await retry_async(
            malformed,
            attempts=5,
            base_delay=0.5,
            max_delay=1.0,
            retry_on=(httpx.HTTPError,),
            sleep=sleep,
        )
    assert calls == 1
    assert excinfo.value.attempts == 1
    assert isinstance(excinfo.value.last_error, KeyError)
    assert sleep.delays == []

@pytest.mark.asyncio
async def test_compliant_verdict_dispatches_nothing(session_factory) -> None:
    notify = RecordingAction("notify")
    dispatcher = _dispatcher(session_factory, {"notify": notify})
    verdict = Verdict(
        artifact_id="sha256:00",
        path="/x",
        compliant=True,
        violated_rules=(),
        policy_version="1",
        actions=("notify",),
    )
    assert await dispatcher.dispatch(verdict) == []
    assert notify.calls == 0


@pytest.mark.asyncio
async def test_identical_verdict_dispatched_twice_acts_once(session_factory) -> None:
    notify, ticket = RecordingAction("notify"), RecordingAction("ticket")
    dispatcher = _dispatcher(session_factory, {"notify": notify, "ticket": ticket})

    first = await dispatcher.dispatch(_verdict())
    second = await dispatcher.dispatch(_verdict())

    assert [(e.action, e.status) for e in first] == [("notify", "done"), ("ticket", "done")]
    assert second == []
    assert (notify.calls, ticket.calls) == (1, 1)


@pytest.mark.asyncio
async def test_concurrent_dispatch_of_same_verdict_acts_once(session_factory) -> None:
    ticket = RecordingAction("ticket")
    dispatcher = _dispatcher(session_factory, {"notify": RecordingAction("notify"), "ticket": ticket})

    results = await asyncio.gather(*(dispatcher.dispatch(_verdict()) for _ in range(5)))

    assert ticket.calls == 1
    assert sum(len(r) for r in results) == 2


@pytest.mark.asyncio
async def test_changed_rule_set_dispatches_again(session_factory) -> None:
    ticket = RecordingAction("ticket")
    dispatcher = _dispatcher(session_factory, {"notify": RecordingAction("notify"), "ticket": ticket})

    await dispatcher.dispatch(_verdict(rules=("whql_required",)))
    await dispatcher.dispatch(_verdict(rules=("must_sign",)))

    assert ticket.calls == 2


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff(session_factory) -> None:
    sleep = SleepRecorder()
    ticket = RecordingAction("ticket", failures=2)
    dispatcher = _dispatcher(
        session_factory, {"notify": RecordingAction("notify"), "ticket": ticket}, sleep
    )

    effects = await dispatcher.dispatch(_verdict())

    by_action = {e.action: e for e in effects}
    assert by_action["ticket"].status == "done"
    assert by_action["ticket"].attempts == 3
    assert by_action["ticket"].reference == "ticket-3"
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_exhausted_action_is_recorded_failed_and_replayable(session_factory) -> None:
    verdict = _verdict()
    ticket = RecordingAction("ticket", failures=10)
    notify = RecordingAction("notify")
    dispatcher = _dispatcher(
        session_factory, {"notify": notify, "ticket": ticket}, max_attempts=3
    )

    effects = await dispatcher.dispatch(verdict)

    by_action = {e.action: e for e in effects}
    assert by_action["notify"].status == "done"
    assert by_action["ticket"].status == "failed"
    assert by_action["ticket"].attempts == 3
    assert "unreachable" in (by_action["ticket"].error or "")

    async with session_factory() as session:
        failed = await DispatchRepo(session).list_failed()
        assert [(r.action, r.status) for r in failed] == [("ticket", DispatchStatus.failed)]

    # Ticket system recovers: only the failed action runs again.
    ticket.failures = 0
    replay = await dispatcher.dispatch(verdict)
    assert [(e.action, e.status) for e in replay] == [("ticket", "done")]
    assert notify.calls == 1

    async with session_factory() as session:
        rec = await DispatchRepo(session).get(dedupe_key=verdict.dedupe_key, action="ticket")
        assert rec is not None
        assert rec.status == DispatchStatus.done
        assert rec.attempts == 4
        failures = await AuditRepo(session).list_for_artifact(
            verdict.artifact_id, event_types={"ACTION_FAILED"}
        )
        assert len(failures) == 1
        assert failures[0].details["attempts"] == 3


@pytest.mark.asyncio
async def test_missing_handler_is_a_failed_effect(session_factory) -> None:
    dispatcher = _dispatcher(session_factory, {"notify": RecordingAction("notify")})
    effects = await dispatcher.dispatch(_verdict())
    assert {e.action: e.status for e in effects} == {"notify": "done", "ticket": "failed"}


@pytest.mark.asyncio
async def test_quarantine_moves_artifact_with_companions(session_factory, tmp_path: Path) -> None:
    src = tmp_path / "drop"
    src.mkdir()
    artifact = src / "contoso.sys"
    artifact.write_bytes(b"MZ...")
    (src / "contoso.sys.signing.json").write_text("{}", encoding="utf-8")
    quarantine = QuarantineAction(tmp_path / "q")
    verdict = Verdict(
        artifact_id="sha256:" + "ef" * 32,
        path=str(artifact),
        compliant=False,
        violated_rules=("must_sign",),
        policy_version="2026.10",
        actions=("quarantine",),
    )
    dispatcher = _dispatcher(session_factory, {"quarantine": quarantine})

    effects = await dispatcher.dispatch(verdict)

    dest = tmp_path / "q" / ("ef" * 6) / "contoso.sys"
    assert effects[0].status == "done"
    assert effects[0].reference == str(dest)
    assert dest.read_bytes() == b"MZ..."
    assert (dest.parent / "contoso.sys.signing.json").is_file()
    assert not artifact.exists()


@pytest.mark.asyncio
async def test_quarantine_of_vanished_artifact_is_not_retried(session_factory, tmp_path: Path) -> None:
    sleep = SleepRecorder()
    dispatcher = _dispatcher(session_factory, {"quarantine": QuarantineAction(tmp_path / "q")}, sleep)
    verdict = Verdict(
        artifact_id="sha256:" + "01" * 32,
        path=str(tmp_path / "gone.sys"),
        compliant=False,
        violated_rules=("must_sign",),
        policy_version="2026.10",
        actions=("quarantine",),
    )

    effects = await dispatcher.dispatch(verdict)

    assert effects[0].status == "failed"
    assert effects[0].attempts == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_ticket_action_sends_dedupe_key_as_idempotency_key(
    session_factory, settings: Settings
) -> None:
    seen: list[httpx.Request] = []
    failures = {"left": 1}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if failures["left"]:
            failures["left"] -= 1
            return httpx.Response(503, json={"detail": "busy"})
        return httpx.Response(200, json={"ticket_id": "T-1", "created": True, "status": "OPEN"})

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://internal.test"
    ) as http:
        client = InternalApiClient(settings=settings, http=http)
        verdict = dataclasses.replace(_verdict(), actions=("ticket",))
        dispatcher = _dispatcher(session_factory, {"ticket": TicketAction(client)})

        effects = await dispatcher.dispatch(verdict)

    assert effects[0].status == "done"
    assert effects[0].reference == "T-1"
    assert effects[0].attempts == 2
    assert [r.url.path for r in seen] == ["/internal/v1/tickets"] * 2
    assert {r.headers["Idempotency-Key"] for r in seen} == {verdict.dedupe_key}
    assert seen[0].headers["Authorization"].startswith("Bearer ")
    assert json.loads(seen[0].content)["artifact_id"] == verdict.artifact_id


@pytest.mark.asyncio
async def test_ticket_response_without_ticket_id_is_a_failed_effect(
    session_factory, settings: Settings
) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "OPEN"})

    sleep = SleepRecorder()
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://internal.test"
    ) as http:
        client = InternalApiClient(settings=settings, http=http)
        verdict = dataclasses.replace(_verdict(), actions=("ticket",))
        dispatcher = _dispatcher(session_factory, {"ticket": TicketAction(client)}, sleep)

        effects = await dispatcher.dispatch(verdict)

    assert [(e.action, e.status, e.attempts) for e in effects] == [("ticket", "failed", 1)]
    assert "missing field 'ticket_id'" in (effects[0].error or "")
    assert len(seen) == 1
    assert sleep.delays == []

    async with session_factory() as session:
        rec = await DispatchRepo(session).get(dedupe_key=verdict.dedupe_key, action="ticket")
        assert rec is not None
        assert rec.status == DispatchStatus.failed


@pytest.mark.asyncio
async def test_notification_response_that_is_not_json_raises_unexpected_response(
    session_factory, settings: Settings
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://internal.test"
    ) as http:
        client = InternalApiClient(settings=settings, http=http)
        with pytest.raises(UnexpectedResponse) as excinfo:
            await client.notify(artifact_id="sha256:00", message="m", details={})

    assert "body is not JSON" in excinfo.value.detail
    assert excinfo.value.endpoint.endswith("/internal/v1/notifications")


@pytest.mark.asyncio
async def test_ticket_action_returns_existing_ticket_when_key_was_seen(settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ticket_id": "T-7", "created": False, "status": "OPEN"})

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://internal.test"
    ) as http:
        client = InternalApiClient(settings=settings, http=http)
        ref = await client.open_ticket(
            idempotency_key="k" * 64, artifact_id="sha256:00", title="t", body={}
        )
        reference = await TicketAction(client)(_verdict())

    assert ref.created is False
    assert reference == "T-7"
