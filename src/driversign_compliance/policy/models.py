"""
driversign_compliance.policy.models

Policy document schema and the immutable runtime policy types.

Responsibilities:
- Validate the YAML policy document (pydantic, unknown keys rejected).
- Define the frozen `Policy` resolved per (platform, driver_class).
- Define `PolicySnapshot`, the read-only table swapped atomically on reload, and its
  content fingerprint (the version label is free text and may not change with the rules).
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from driversign_compliance.errors import NotFoundError

Action = Literal["quarantine", "notify", "ticket"]

DEFAULT_ACTIONS: tuple[Action, ...] = ("quarantine", "notify", "ticket")


class RuleSet(BaseModel):
    """Signing requirements for one (platform, driver_class) entry."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    must_sign: bool = False
    whql_required: bool = False
    gpg_signed: bool = False
    notarized: bool = False
    allowed_signers: tuple[str, ...] = Field(
        default=(),
        description="Substrings of acceptable signer identities (empty = any signer)",
    )
    on_noncompliant: tuple[Action, ...] | None = Field(
        default=None,
        description="Overrides the document-level action list for this entry",
    )


class PolicyDocument(BaseModel):
    """Top-level YAML document: `platform -> driver_class -> RuleSet`."""

    model_config = ConfigDict(extra="forbid")

    version: str
    on_noncompliant: tuple[Action, ...] = DEFAULT_ACTIONS
    policies: dict[str, dict[str, RuleSet]] = Field(default_factory=dict)

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, v: Any) -> Any:
        # YAML turns an unquoted `2026-10-01` into a date; the version is an opaque label.
        if v is None:
            return v
        return str(v)

    @field_validator("policies", mode="before")
    @classmethod
    def normalise_keys(cls, v: Any) -> Any:
        if v is None:
            return {}
        if not isinstance(v, dict):
            msg = "policies must be a mapping of platform -> driver_class -> rules"
            raise ValueError(msg)

        out: dict[str, dict[str, Any]] = {}
        for platform, classes in v.items():
            p = str(platform).strip().lower()
            if not p:
                raise ValueError("platform keys must be non-empty")
            if p in out:
                raise ValueError(f"duplicate platform {p!r} (keys are case-insensitive)")
            if not isinstance(classes, dict):
                raise ValueError(f"policies.{p} must be a mapping of driver_class -> rules")
            normalised: dict[str, Any] = {}
            for driver_class, rules in classes.items():
                c = str(driver_class).strip().lower()
                if not c:
                    raise ValueError(f"policies.{p}: driver_class keys must be non-empty")
                if c in normalised:
                    raise ValueError(f"policies.{p}: duplicate driver_class {c!r}")
                normalised[c] = rules if rules is not None else {}
            out[p] = normalised
        return out


def document_fingerprint(doc: PolicyDocument) -> str:
    """`sha256:<hex>` of the validated document, independent of key order and YAML layout."""
    canonical = json.dumps(doc.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
    return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class Policy:
    platform: str
    driver_class: str
    must_sign: bool
    whql_required: bool
    gpg_signed: bool
    notarized: bool
    allowed_signers: tuple[str, ...]
    actions: tuple[str, ...]
    version: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "driver_class": self.driver_class,
            "must_sign": self.must_sign,
            "whql_required": self.whql_required,
            "gpg_signed": self.gpg_signed,
            "notarized": self.notarized,
            "allowed_signers": list(self.allowed_signers),
            "on_noncompliant": list(self.actions),
        }


@dataclass(frozen=True, slots=True)
class PolicySnapshot:
    """
    Read-only policy table. Never mutated; a reload builds a new snapshot.
    """

    version: str
    table: Mapping[tuple[str, str], Policy]
    default_actions: tuple[str, ...] = DEFAULT_ACTIONS
    fingerprint: str = "unloaded"
    source: str | None = None
    loaded_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @classmethod
    def empty(cls) -> PolicySnapshot:
        return cls(version="unloaded", table=MappingProxyType({}))

    def lookup(self, platform: str, driver_class: str) -> Policy:
        key = (platform.strip().lower(), driver_class.strip().lower())
        policy = self.table.get(key)
        if policy is None:
            raise NotFoundError(platform=key[0], driver_class=key[1])
        return policy

    @classmethod
    def from_document(cls, doc: PolicyDocument, *, source: str | None = None) -> PolicySnapshot:
        table: dict[tuple[str, str], Policy] = {}
        for platform, classes in doc.policies.items():
            for driver_class, rules in classes.items():
                actions = rules.on_noncompliant
                if actions is None:
                    actions = doc.on_noncompliant
                table[(platform, driver_class)] = Policy(
                    platform=platform,
                    driver_class=driver_class,
                    must_sign=rules.must_sign,
                    whql_required=rules.whql_required,
                    gpg_signed=rules.gpg_signed,
                    notarized=rules.notarized,
                    allowed_signers=tuple(rules.allowed_signers),
                    # de-dupe while keeping order
                    actions=tuple(dict.fromkeys(actions)),
                    version=doc.version,
                )
        return cls(
            version=doc.version,
            table=MappingProxyType(table),
            default_actions=tuple(dict.fromkeys(doc.on_noncompliant)),
            fingerprint=document_fingerprint(doc),
            source=source,
        )

    def keys(self) -> list[tuple[str, str]]:
        return sorted(self.table)

    def as_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "fingerprint": self.fingerprint,
            "source": self.source,
            "loaded_at": self.loaded_at.isoformat(),
            "on_noncompliant": list(self.default_actions),
            "policies": [self.table[k].as_dict() for k in self.keys()],
        }


# --- Module Notes -----------------------------------------------------------
# The pydantic models describe the on-disk document; the frozen dataclasses are what
# the evaluator sees, so evaluation never depends on validation-time behaviour.
