"""
tests.test_cli

`dsc` command-line behaviour: report output and exit codes.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from driversign_compliance.cli import EXIT_ERROR, EXIT_NONCOMPLIANT, EXIT_OK, main
from driversign_compliance.settings import Settings

from builders import pe_bytes, ppd_bytes, write_artifact


def test_compliant_batch_exits_zero_and_prints_report(
    settings: Settings, artifacts_dir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    ppd = write_artifact(artifacts_dir, "contoso.ppd", ppd_bytes())

    code = main(["evaluate", "--no-dispatch", str(ppd)], settings=settings)

    assert code == EXIT_OK
    out = capsys.readouterr().out
    report = json.loads(out)
    assert report["total"] == 1
    assert report["compliant"] == 1
    assert report["signed_percentage"] == 0.0


def test_noncompliant_batch_exits_one_and_writes_report_file(
    settings: Settings, artifacts_dir: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    signed = write_artifact(
        artifacts_dir, "signed.sys", pe_bytes(signed=True), evidence={"cert_chain_valid": True}
    )
    target = tmp_path / "out" / "report.json"

    code = main(
        ["evaluate", "--no-dispatch", "--report", str(target), str(signed)], settings=settings
    )

    assert code == EXIT_NONCOMPLIANT
    assert capsys.readouterr().out == ""
    report = json.loads(target.read_text(encoding="utf-8"))
    assert report["signed_percentage"] == 100.0
    assert report["verdicts"][0]["violated_rules"] == ["whql_required"]


def test_invalid_policy_exits_two(
    settings: Settings, artifacts_dir: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("version: '1'\npolicies: {windows: {kernel: {must_sign: maybe}}}\n", encoding="utf-8")
    ppd = write_artifact(artifacts_dir, "contoso.ppd", ppd_bytes())

    code = main(["evaluate", "--policy", str(bad), str(ppd)], settings=settings)

    assert code == EXIT_ERROR
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Invalid policy" in captured.err


def test_redispatch_with_nothing_failed(
    settings: Settings, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["redispatch"], settings=settings) == EXIT_OK
    assert json.loads(capsys.readouterr().out) == []


def test_subcommand_is_required() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 2
