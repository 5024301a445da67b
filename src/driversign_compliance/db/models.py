"""
driversign_compliance.db.models

Persistence schema for the evaluator.

Responsibilities:
- VerdictRecord: cached verdict per (evidence digest, policy fingerprint)
- DispatchRecord: idempotency ledger for on_noncompliant actions
- Ticket / Notification: backing store of the in-process ticket and notification systems
- AuditEvent: append-only audit trail
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Enum, Index, String, Text, UniqueConstraint, Uuid as SAUuid
from sqlalchemy.orm import Mapped, mapped_column

from driversign_compliance.db.base import Base


def _utcnow() -> datetime:
    # Stored naive (UTC) so SQLite and Postgres round-trip identically.
    return datetime.now(tz=UTC).replace(tzinfo=None)


class DispatchStatus(enum.StrEnum):
    done = "DONE"
    failed = "FAILED"


class VerdictRecord(Base):
    __tablename__ = "verdicts"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # sha256(evidence_digest | policy_fingerprint); see `evaluation.evaluator.verdict_cache_key`.
    cache_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    evidence_digest: Mapped[str] = mapped_column(String(80), nullable=False)
    policy_fingerprint: Mapped[str] = mapped_column(String(80), nullable=False)
    artifact_id: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    policy_version: Mapped[str] = mapped_column(String(128), nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)

    compliant: Mapped[bool] = mapped_column(nullable=False, index=True)
    violated_rules: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # Full verdict payload (as produced by `Verdict.as_dict`) for replay without inspection.
    verdict: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    metadata_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, onupdate=_utcnow)


class DispatchRecord(Base):
    __tablename__ = "dispatches"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # sha256(artifact_id | rule_set_hash); one row per action for that key.
    dedupe_key: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    artifact_id: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    policy_version: Mapped[str] = mapped_column(String(128), nullable=False)
    # Cached verdict to replay from; null only for rows written without one.
    verdict_key: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    status: Mapped[DispatchStatus] = mapped_column(
        Enum(DispatchStatus), nullable=False, index=True
    )
    attempts: Mapped[int] = mapped_column(nullable=False, default=0)
    reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (UniqueConstraint("dedupe_key", "action"),)


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    idempotency_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    artifact_id: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    body: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="OPEN")

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    artifact_id: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(64), nullable=False, default="driver-signing")
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    artifact_id: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    actor: Mapped[str] = mapped_column(String(256), nullable=False)  # user id / cli / system
    event_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, index=True)

    __table_args__ = (Index("ix_audit_artifact_created", "artifact_id", "created_at"),)


# --- Module Notes -----------------------------------------------------------
# The unique constraint on (dedupe_key, action) is the last line of defence for
# dispatch idempotence when two processes share one database.
