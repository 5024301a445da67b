"""
driversign_compliance.inspection.models

Inspection domain models.

Responsibilities:
- Define `ArtifactMetadata`, the immutable signing facts of one driver artifact.
- Define `SigningEvidence`, the optional CI-written sidecar next to an artifact.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

WHQL_PUBLISHER = "Microsoft Windows Hardware Compatibility Publisher"


class SigningEvidence(BaseModel):
    """
    `<artifact>.signing.json`, produced by the CI signing step from the signing tool's
    structured output. Fields not present are treated as "not established".
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    driver_class: str | None = None
    signer_identity: str | None = Field(default=None, max_length=512)
    cert_chain_valid: bool = False
    notarization_ticket_present: bool = False
    whql_certified: bool = False


@dataclass(frozen=True, slots=True)
class ArtifactMetadata:
    artifact_id: str
    path: str
    platform: str
    driver_class: str
    format: str
    signature_present: bool
    signer_identity: str | None
    cert_chain_valid: bool
    notarization_ticket_present: bool
    gpg_signature_present: bool
    whql_signed: bool

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


# --- Module Notes -----------------------------------------------------------
# Metadata is created once per inspection and never updated. Signing facts can change
# without the artifact bytes changing (sidecar, detached .asc/.sig), so cached verdicts
# are keyed on `inspector.evidence_digest`, not on artifact_id.
