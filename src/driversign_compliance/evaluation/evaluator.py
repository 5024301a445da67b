"""
driversign_compliance.evaluation.evaluator

Compliance Evaluator: compare inspected metadata against the resolved policy.

Responsibilities:
- Apply rules in a fixed, documented order so `violated_rules` is reproducible.
- Produce the fail-closed verdict when no policy exists for an artifact.
- Produce the error verdict for artifacts that could not be inspected.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from driversign_compliance.errors import NotFoundError, UnreadableArtifact
from driversign_compliance.inspection.models import ArtifactMetadata
from driversign_compliance.observability.logging import get_logger
from driversign_compliance.policy.models import DEFAULT_ACTIONS, Policy

log = get_logger(__name__)

RULE_MUST_SIGN = "must_sign"
RULE_CERT_CHAIN_VALID = "cert_chain_valid"
RULE_WHQL_REQUIRED = "whql_required"
RULE_NOTARIZED = "notarized"
RULE_GPG_SIGNED = "gpg_signed"
RULE_TRUSTED_SIGNER = "trusted_signer"
RULE_POLICY_MISSING = "policy_missing"
RULE_UNREADABLE = "unreadable_artifact"


def _must_sign(m: ArtifactMetadata, p: Policy) -> bool:
    return p.must_sign and not m.signature_present


def _cert_chain_valid(m: ArtifactMetadata, p: Policy) -> bool:
    # Only meaningful once a signature exists; an unsigned artifact already fails must_sign.
    return p.must_sign and m.signature_present and not m.cert_chain_valid


def _whql_required(m: ArtifactMetadata, p: Policy) -> bool:
    return p.whql_required and not m.whql_signed


def _notarized(m: ArtifactMetadata, p: Policy) -> bool:
    return p.notarized and not m.notarization_ticket_present


def _gpg_signed(m: ArtifactMetadata, p: Policy) -> bool:
    return p.gpg_signed and not m.gpg_signature_present


def _trusted_signer(m: ArtifactMetadata, p: Policy) -> bool:
    if not p.allowed_signers:
        return False
    signer = m.signer_identity or ""
    return not any(allowed in signer for allowed in p.allowed_signers)


# Evaluation order is part of the report contract; append new rules at the end.
RULES: tuple[tuple[str, Callable[[ArtifactMetadata, Policy], bool]], ...] = (
    (RULE_MUST_SIGN, _must_sign),
    (RULE_CERT_CHAIN_VALID, _cert_chain_valid),
    (RULE_WHQL_REQUIRED, _whql_required),
    (RULE_NOTARIZED, _notarized),
    (RULE_GPG_SIGNED, _gpg_signed),
    (RULE_TRUSTED_SIGNER, _trusted_signer),
)

RULE_ORDER: tuple[str, ...] = tuple(name for name, _ in RULES)


def rule_set_hash(violated_rules: tuple[str, ...] | list[str]) -> str:
    return hashlib.sha256(",".join(violated_rules).encode("utf-8")).hexdigest()


def verdict_cache_key(evidence_digest: str, policy_fingerprint: str) -> str:
    return hashlib.sha256(f"{evidence_digest}|{policy_fingerprint}".encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class Verdict:
    artifact_id: str
    path: str
    compliant: bool
    violated_rules: tuple[str, ...]
    policy_version: str
    platform: str | None = None
    driver_class: str | None = None
    signature_present: bool = False
    actions: tuple[str, ...] = ()
    error: str | None = None
    # Set once the verdict is cached; lets a failed action be replayed from the cache.
    cache_key: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def rule_set_hash(self) -> str:
        return rule_set_hash(self.violated_rules)

    @property
    def dedupe_key(self) -> str:
        return hashlib.sha256(
            f"{self.artifact_id}|{self.rule_set_hash}".encode("utf-8")
        ).hexdigest()

    def as_dict(self) -> dict[str, Any]:
        return {
            "artifact_id": self.artifact_id,
            "path": self.path,
            "platform": self.platform,
            "driver_class": self.driver_class,
            "compliant": self.compliant,
            "violated_rules": list(self.violated_rules),
            "policy_version": self.policy_version,
            "signature_present": self.signature_present,
            "actions": list(self.actions),
            "error": self.error,
            "cache_key": self.cache_key,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Verdict:
        return cls(
            artifact_id=str(data["artifact_id"]),
            path=str(data["path"]),
            compliant=bool(data["compliant"]),
            violated_rules=tuple(data.get("violated_rules", ())),
            policy_version=str(data.get("policy_version", "")),
            platform=data.get("platform"),
            driver_class=data.get("driver_class"),
            signature_present=bool(data.get("signature_present", False)),
            actions=tuple(data.get("actions", ())),
            error=data.get("error"),
            cache_key=data.get("cache_key"),
        )


def evaluate(metadata: ArtifactMetadata, policy: Policy) -> Verdict:
    violated = tuple(name for name, check in RULES if check(metadata, policy))
    compliant = not violated
    verdict = Verdict(
        artifact_id=metadata.artifact_id,
        path=metadata.path,
        compliant=compliant,
        violated_rules=violated,
        policy_version=policy.version,
        platform=metadata.platform,
        driver_class=metadata.driver_class,
        signature_present=metadata.signature_present,
        actions=() if compliant else policy.actions,
        metadata=metadata.as_dict(),
    )
    log.info(
        "verdict_evaluated",
        artifact_id=verdict.artifact_id,
        compliant=verdict.compliant,
        violated_rules=list(verdict.violated_rules),
        policy_version=verdict.policy_version,
    )
    return verdict


def evaluate_missing_policy(
    metadata: ArtifactMetadata,
    error: NotFoundError,
    *,
    policy_version: str,
    actions: tuple[str, ...] = DEFAULT_ACTIONS,
) -> Verdict:
    """Fail closed: an unknown (platform, driver_class) is non-compliant."""
    log.warning(
        "policy_missing",
        artifact_id=metadata.artifact_id,
        platform=error.platform,
        driver_class=error.driver_class,
    )
    return Verdict(
        artifact_id=metadata.artifact_id,
        path=metadata.path,
        compliant=False,
        violated_rules=(RULE_POLICY_MISSING,),
        policy_version=policy_version,
        platform=metadata.platform,
        driver_class=metadata.driver_class,
        signature_present=metadata.signature_present,
        actions=tuple(actions),
        error=str(error),
        metadata=metadata.as_dict(),
    )


def evaluate_unreadable(
    error: UnreadableArtifact, *, artifact_id: str | None, policy_version: str
) -> Verdict:
    """
    An uninspectable artifact is reported, not dispatched: there is no trustworthy
    identity or platform to act on, and the failure is surfaced for a human.
    """

    return Verdict(
        artifact_id=artifact_id or f"unreadable:{error.path}",
        path=error.path,
        compliant=False,
        violated_rules=(RULE_UNREADABLE,),
        policy_version=policy_version,
        error=error.reason,
    )


# --- Module Notes -----------------------------------------------------------
# Verdicts are derived data: they are cached next to the artifact digest but always
# reproducible from (metadata, policy).
