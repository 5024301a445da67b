"""
tests.test_compliance_service

End-to-end batch evaluation through the service layer.

Responsibilities:
- Report totals and the signed/total percentage.
- Fail-closed handling of unknown policies and unreadable artifacts.
- Verdict caching by (evidence digest, policy fingerprint) and replay of failed actions.
- Undeclared action errors are reported per artifact without aborting the batch.
"""

from __future__ import annotations

import copy
import json
from pathlib import Path

import pytest
import yaml

from driversign_compliance.db.repositories.audit import AuditRepo
from driversign_compliance.db.repositories.dispatches import DispatchRepo
from driversign_compliance.db.repositories.verdicts import VerdictRepo
from driversign_compliance.dispatch.dispatcher import ActionDispatcher
from driversign_compliance.inspection.models import WHQL_PUBLISHER
from driversign_compliance.policy.store import PolicyStore
from driversign_compliance.reporting.report import build_report
from driversign_compliance.services.compliance_service import ComplianceService

from builders import (
    POLICY,
    CrashingAction,
    RecordingAction,
    SleepRecorder,
    elf_bytes,
    macho_bytes,
    pe_bytes,
    ppd_bytes,
    write_artifact,
)


def _service(session_factory, policy_store: PolicyStore, handlers=None) -> ComplianceService:
    dispatcher = None
    if handlers is not None:
        dispatcher = ActionDispatcher(
            session_factory=session_factory,
            handlers=handlers,
            max_attempts=2,
            backoff_seconds=0.0,
            backoff_max_seconds=0.0,
            sleep=SleepRecorder(),
        )
    return ComplianceService(
        session_factory=session_factory, policy_store=policy_store, dispatcher=dispatcher, actor="test"
    )


def test_empty_report_has_zero_percentages() -> None:
    report = build_report([], policy_version="2026.10")
    assert report.total == 0
    assert report.signed_percentage == 0.0
    assert report.all_compliant is True


@pytest.mark.asyncio
async def test_batch_report_counts_signed_and_compliant(
    session_factory, policy_store: PolicyStore, artifacts_dir: Path
) -> None:
    paths = [
        write_artifact(
            artifacts_dir,
            "good.sys",
            pe_bytes(signed=True),
            evidence={"signer_identity": WHQL_PUBLISHER, "cert_chain_valid": True},
        ),
        write_artifact(artifacts_dir, "unsigned.sys", pe_bytes(signed=False)),
        write_artifact(artifacts_dir, "contoso.ppd", ppd_bytes()),
    ]

    report = await _service(session_factory, policy_store).evaluate_paths(paths, dispatch=False)

    assert report.policy_version == "2026.10"
    assert (report.total, report.signed, report.compliant, report.errors) == (3, 1, 2, 0)
    assert report.signed_percentage == 33.33
    assert report.compliant_percentage == 66.67
    assert report.all_compliant is False
    by_name = {Path(v.path).name: v for v in report.verdicts}
    assert by_name["unsigned.sys"].violated_rules == ["must_sign", "whql_required"]
    assert by_name["contoso.ppd"].compliant is True
    # JSON report is the public contract.
    payload = json.loads(report.model_dump_json())
    assert payload["signed_percentage"] == 33.33
    assert payload["verdicts"][0]["artifact_id"].startswith("sha256:")


@pytest.mark.asyncio
async def test_unknown_driver_class_fails_closed(
    session_factory, policy_store: PolicyStore, artifacts_dir: Path
) -> None:
    path = write_artifact(
        artifacts_dir, "printer.sys", pe_bytes(signed=True), evidence={"driver_class": "printer"}
    )
    notify = RecordingAction("notify")
    handlers = {"quarantine": RecordingAction("quarantine"), "notify": notify, "ticket": RecordingAction("ticket")}

    entry = await _service(session_factory, policy_store, handlers).evaluate_path(path)

    assert entry.compliant is False
    assert entry.violated_rules == ["policy_missing"]
    assert entry.driver_class == "printer"
    assert [s.action for s in entry.side_effects] == ["quarantine", "notify", "ticket"]
    assert notify.calls == 1


@pytest.mark.asyncio
async def test_unreadable_artifact_is_reported_not_dispatched(
    session_factory, policy_store: PolicyStore, artifacts_dir: Path
) -> None:
    bad = write_artifact(artifacts_dir, "bad.sys", b"MZ" + b"\x00" * 8)
    ticket = RecordingAction("ticket")
    handlers = {"quarantine": RecordingAction("quarantine"), "notify": RecordingAction("notify"), "ticket": ticket}

    report = await _service(session_factory, policy_store, handlers).evaluate_paths(
        [bad, artifacts_dir / "missing.sys"]
    )

    assert report.errors == 2
    assert report.compliant == 0
    assert all(v.violated_rules == ["unreadable_artifact"] for v in report.verdicts)
    assert all(v.side_effects == [] for v in report.verdicts)
    assert ticket.calls == 0
    assert report.verdicts[1].artifact_id.startswith("unreadable:")

    async with session_factory() as session:
        events = await AuditRepo(session).list_for_artifact(report.verdicts[0].artifact_id)
        assert [e.event_type for e in events] == ["ARTIFACT_UNREADABLE"]


@pytest.mark.asyncio
async def test_same_bytes_under_same_policy_hit_the_cache(
    session_factory, policy_store: PolicyStore, artifacts_dir: Path
) -> None:
    path = write_artifact(artifacts_dir, "filter", elf_bytes())
    svc = _service(session_factory, policy_store)

    first = await svc.evaluate_path(path, dispatch=False)
    copy = artifacts_dir / "filter-copy"
    copy.write_bytes(path.read_bytes())
    second = await svc.evaluate_path(copy, dispatch=False)

    assert first.cached is False
    assert second.cached is True
    assert second.artifact_id == first.artifact_id
    assert second.path == str(copy)
    assert second.violated_rules == first.violated_rules == ["must_sign", "gpg_signed"]


@pytest.mark.asyncio
async def test_new_policy_version_re_evaluates(
    session_factory, policy_store: PolicyStore, policy_file: Path, artifacts_dir: Path
) -> None:
    path = write_artifact(artifacts_dir, "a.dext", macho_bytes(signed=True))
    svc = _service(session_factory, policy_store)
    first = await svc.evaluate_path(path, dispatch=False)
    assert first.violated_rules == ["cert_chain_valid", "notarized"]

    relaxed = dict(POLICY, version="2026.11")
    relaxed["policies"] = {"macos": {"dext": {"must_sign": False}}}
    policy_file.write_text(yaml.safe_dump(relaxed), encoding="utf-8")
    policy_store.reload()

    second = await svc.evaluate_path(path, dispatch=False)
    assert second.cached is False
    assert second.policy_version == "2026.11"
    assert second.compliant is True

    async with session_factory() as session:
        history = await VerdictRepo(session).list_for_artifact(first.artifact_id)
        assert sorted(r.policy_version for r in history) == ["2026.10", "2026.11"]


@pytest.mark.asyncio
async def test_same_bytes_with_different_signing_companions_are_not_shared(
    session_factory, policy_store: PolicyStore, artifacts_dir: Path
) -> None:
    signed_dir = artifacts_dir / "signed"
    bare_dir = artifacts_dir / "bare"
    signed_dir.mkdir()
    bare_dir.mkdir()
    signed = write_artifact(
        signed_dir,
        "rastertocontoso",
        elf_bytes(),
        evidence={"cert_chain_valid": True},
        detached_signature=True,
    )
    bare = write_artifact(bare_dir, "rastertocontoso", elf_bytes())
    svc = _service(session_factory, policy_store)

    first = await svc.evaluate_path(signed, dispatch=False)
    second = await svc.evaluate_path(bare, dispatch=False)

    assert first.compliant is True
    assert second.artifact_id == first.artifact_id
    assert second.cached is False
    assert second.compliant is False
    assert second.violated_rules == ["must_sign", "gpg_signed"]


@pytest.mark.asyncio
async def test_adding_signing_evidence_re_evaluates(
    session_factory, policy_store: PolicyStore, artifacts_dir: Path
) -> None:
    path = write_artifact(artifacts_dir, "rastertocontoso", elf_bytes())
    svc = _service(session_factory, policy_store)
    first = await svc.evaluate_path(path, dispatch=False)
    assert first.violated_rules == ["must_sign", "gpg_signed"]

    # CI signs the filter afterwards: same bytes, new companions.
    write_artifact(
        artifacts_dir,
        "rastertocontoso",
        elf_bytes(),
        evidence={"cert_chain_valid": True},
        detached_signature=True,
    )
    second = await svc.evaluate_path(path, dispatch=False)

    assert second.cached is False
    assert second.signature_present is True
    assert second.compliant is True
    assert second.artifact_id == first.artifact_id


@pytest.mark.asyncio
async def test_rule_edit_under_unchanged_version_label_re_evaluates(
    session_factory, policy_store: PolicyStore, policy_file: Path, artifacts_dir: Path
) -> None:
    path = write_artifact(artifacts_dir, "contoso.ppd", ppd_bytes())
    svc = _service(session_factory, policy_store)
    first = await svc.evaluate_path(path, dispatch=False)
    assert first.compliant is True
    before = policy_store.snapshot().fingerprint

    tightened = copy.deepcopy(POLICY)
    tightened["policies"]["linux"]["ppd"] = {"must_sign": True}
    policy_file.write_text(yaml.safe_dump(tightened), encoding="utf-8")
    policy_store.reload()

    assert policy_store.version == "2026.10"
    assert policy_store.snapshot().fingerprint != before

    second = await svc.evaluate_path(path, dispatch=False)
    assert second.cached is False
    assert second.compliant is False
    assert second.violated_rules == ["must_sign"]

    async with session_factory() as session:
        history = await VerdictRepo(session).list_for_artifact(first.artifact_id)
        assert [r.policy_version for r in history] == ["2026.10", "2026.10"]
        assert len({r.policy_fingerprint for r in history}) == 2


@pytest.mark.asyncio
async def test_rerunning_a_batch_does_not_repeat_actions(
    session_factory, policy_store: PolicyStore, artifacts_dir: Path
) -> None:
    path = write_artifact(artifacts_dir, "u.dll", pe_bytes(signed=False, subsystem=2))
    ticket = RecordingAction("ticket")
    svc = _service(session_factory, policy_store, {"ticket": ticket})

    first = await svc.evaluate_paths([path])
    second = await svc.evaluate_paths([path])

    assert [s.action for s in first.verdicts[0].side_effects] == ["ticket"]
    assert second.verdicts[0].cached is True
    assert second.verdicts[0].side_effects == []
    assert ticket.calls == 1


@pytest.mark.asyncio
async def test_redispatch_replays_failed_actions_from_cached_verdict(
    session_factory, policy_store: PolicyStore, artifacts_dir: Path
) -> None:
    path = write_artifact(artifacts_dir, "u.dll", pe_bytes(signed=False, subsystem=2))
    ticket = RecordingAction("ticket", failures=2)
    svc = _service(session_factory, policy_store, {"ticket": ticket})

    report = await svc.evaluate_paths([path])
    assert report.failed_actions == 1

    # The file is gone; replay must not need to re-inspect it.
    path.unlink()
    effects = await svc.redispatch_failed()

    assert [(e.action, e.status) for e in effects] == [("ticket", "done")]
    assert ticket.calls == 3
    assert await svc.redispatch_failed() == []


@pytest.mark.asyncio
async def test_unexpected_handler_error_fails_the_action_not_the_batch(
    session_factory, policy_store: PolicyStore, artifacts_dir: Path
) -> None:
    a = write_artifact(artifacts_dir, "a.dll", pe_bytes(signed=False, subsystem=2))
    b = write_artifact(artifacts_dir, "b.dll", pe_bytes(signed=False, subsystem=2, pe32_plus=True))
    ticket = CrashingAction("ticket", KeyError("ticket_id"))
    svc = _service(session_factory, policy_store, {"ticket": ticket})

    report = await svc.evaluate_paths([a, b])

    assert report.total == 2
    assert report.failed_actions == 2
    for entry in report.verdicts:
        [effect] = entry.side_effects
        assert effect.status == "failed"
        assert effect.attempts == 1
        assert effect.error == "KeyError: 'ticket_id'"
    assert ticket.calls == 2

    async with session_factory() as session:
        failed = await DispatchRepo(session).list_failed()
        assert sorted(r.artifact_id for r in failed) == sorted(
            v.artifact_id for v in report.verdicts
        )
        assert all(r.verdict_key is not None for r in failed)
