"""
driversign_compliance.reporting.report

JSON compliance report.

Responsibilities:
- Aggregate per-artifact verdicts into totals and signed/compliant percentages.
- Serialise the report (pydantic) for the CLI and the API.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from driversign_compliance.dispatch.dispatcher import SideEffect
from driversign_compliance.evaluation.evaluator import Verdict


class SideEffectEntry(BaseModel):
    action: str
    status: str
    attempts: int
    reference: str | None = None
    error: str | None = None


class VerdictEntry(BaseModel):
    artifact_id: str
    path: str
    platform: str | None = None
    driver_class: str | None = None
    compliant: bool
    violated_rules: list[str] = Field(default_factory=list)
    signature_present: bool = False
    policy_version: str
    error: str | None = None
    cached: bool = False
    side_effects: list[SideEffectEntry] = Field(default_factory=list)


class ComplianceReport(BaseModel):
    generated_at: datetime
    policy_version: str
    total: int
    signed: int
    compliant: int
    errors: int
    signed_percentage: float
    compliant_percentage: float
    failed_actions: int
    verdicts: list[VerdictEntry] = Field(default_factory=list)

    @property
    def all_compliant(self) -> bool:
        return self.compliant == self.total

    def write(self, path: str | Path) -> None:
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(self.model_dump_json(indent=2) + "\n", encoding="utf-8")


def _pct(part: int, whole: int) -> float:
    if whole == 0:
        return 0.0
    return round(part * 100.0 / whole, 2)


def verdict_entry(
    verdict: Verdict, *, effects: list[SideEffect] | None = None, cached: bool = False
) -> VerdictEntry:
    return VerdictEntry(
        artifact_id=verdict.artifact_id,
        path=verdict.path,
        platform=verdict.platform,
        driver_class=verdict.driver_class,
        compliant=verdict.compliant,
        violated_rules=list(verdict.violated_rules),
        signature_present=verdict.signature_present,
        policy_version=verdict.policy_version,
        error=verdict.error,
        cached=cached,
        side_effects=[SideEffectEntry(**_effect_fields(e)) for e in effects or []],
    )


def _effect_fields(effect: SideEffect) -> dict[str, Any]:
    data = effect.as_dict()
    data.pop("artifact_id", None)
    return data


def build_report(entries: list[VerdictEntry], *, policy_version: str) -> ComplianceReport:
    total = len(entries)
    signed = sum(1 for e in entries if e.signature_present)
    compliant = sum(1 for e in entries if e.compliant)
    errors = sum(1 for e in entries if e.error is not None)
    failed_actions = sum(1 for e in entries for s in e.side_effects if s.status == "failed")
    return ComplianceReport(
        generated_at=datetime.now(tz=UTC),
        policy_version=policy_version,
        total=total,
        signed=signed,
        compliant=compliant,
        errors=errors,
        signed_percentage=_pct(signed, total),
        compliant_percentage=_pct(compliant, total),
        failed_actions=failed_actions,
        verdicts=entries,
    )
