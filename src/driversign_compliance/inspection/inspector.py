"""
driversign_compliance.inspection.inspector

Artifact Inspector: extract signing metadata from a driver artifact.

Responsibilities:
- Compute the artifact identity (content digest) and the evidence digest that keys
  cached verdicts (content plus sidecar and detached signatures).
- Parse the file header for its platform's signature format (see `inspection.formats`).
- Merge CI signing evidence (sidecar) and detached signatures into `ArtifactMetadata`.
- Fail with `UnreadableArtifact` when any of the above cannot be parsed.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

from pydantic import ValidationError

from driversign_compliance.errors import UnreadableArtifact
from driversign_compliance.inspection.formats import FormatError, sniff
from driversign_compliance.inspection.models import (
    WHQL_PUBLISHER,
    ArtifactMetadata,
    SigningEvidence,
)
from driversign_compliance.observability.logging import get_logger

log = get_logger(__name__)

SIDECAR_SUFFIX = ".signing.json"
DETACHED_SIGNATURE_SUFFIXES = (".asc", ".sig")


def artifact_digest(artifact_path: str | Path) -> str:
    """`sha256:<hex>` of the file contents; raises `UnreadableArtifact` if unreadable."""
    path = Path(artifact_path)
    h = hashlib.sha256()
    try:
        with path.open("rb") as f:
            for chunk in iter(lambda: f.read(1 << 20), b""):
                h.update(chunk)
    except OSError as e:
        raise UnreadableArtifact(path=str(path), reason=f"cannot read file: {e}") from e
    return f"sha256:{h.hexdigest()}"


def sidecar_path(artifact_path: Path) -> Path:
    return artifact_path.with_name(artifact_path.name + SIDECAR_SUFFIX)


def detached_signature_paths(artifact_path: Path) -> list[Path]:
    return [artifact_path.with_name(artifact_path.name + s) for s in DETACHED_SIGNATURE_SUFFIXES]


def companion_files(artifact_path: Path) -> list[Path]:
    """Files that travel with an artifact (used by quarantine)."""
    candidates = [sidecar_path(artifact_path), *detached_signature_paths(artifact_path)]
    return [p for p in candidates if p.is_file()]


def evidence_digest(artifact_path: str | Path) -> str:
    """
    `sha256:<hex>` over everything `inspect` reads: the artifact bytes, the sidecar
    and each detached signature (or their absence). Keys the verdict cache.
    """

    path = Path(artifact_path)
    h = hashlib.sha256()
    h.update(artifact_digest(path).encode("ascii"))
    for suffix, companion in (
        (SIDECAR_SUFFIX, sidecar_path(path)),
        *zip(DETACHED_SIGNATURE_SUFFIXES, detached_signature_paths(path)),
    ):
        h.update(f"|{suffix}:".encode("ascii"))
        if not companion.is_file():
            h.update(b"-")
            continue
        try:
            h.update(hashlib.sha256(companion.read_bytes()).hexdigest().encode("ascii"))
        except OSError as e:
            raise UnreadableArtifact(
                path=str(path), reason=f"cannot read {companion.name}: {e}"
            ) from e
    return f"sha256:{h.hexdigest()}"


def load_signing_evidence(artifact_path: Path) -> SigningEvidence | None:
    path = sidecar_path(artifact_path)
    if not path.is_file():
        return None
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return SigningEvidence.model_validate(raw)
    except (OSError, ValueError, ValidationError) as e:
        # json.JSONDecodeError is a ValueError subclass.
        raise UnreadableArtifact(
            path=str(artifact_path), reason=f"malformed signing evidence {path.name}: {e}"
        ) from e


def inspect(artifact_path: str | Path) -> ArtifactMetadata:
    path = Path(artifact_path)
    if not path.is_file():
        raise UnreadableArtifact(path=str(path), reason="not a regular file")

    try:
        data = path.read_bytes()
    except OSError as e:
        raise UnreadableArtifact(path=str(path), reason=f"cannot read file: {e}") from e
    if not data:
        raise UnreadableArtifact(path=str(path), reason="empty file")

    try:
        facts = sniff(data)
    except FormatError as e:
        raise UnreadableArtifact(path=str(path), reason=str(e)) from e

    evidence = load_signing_evidence(path) or SigningEvidence()
    gpg_present = any(p.is_file() for p in detached_signature_paths(path))

    if facts.embedded_signature is None:
        signature_present = gpg_present
    else:
        signature_present = facts.embedded_signature

    signer = evidence.signer_identity
    whql = evidence.whql_certified or (signer is not None and WHQL_PUBLISHER in signer)
    driver_class = (evidence.driver_class or facts.default_driver_class).strip().lower()

    metadata = ArtifactMetadata(
        artifact_id=f"sha256:{hashlib.sha256(data).hexdigest()}",
        path=str(path),
        platform=facts.platform,
        driver_class=driver_class,
        format=facts.format,
        signature_present=signature_present,
        signer_identity=signer,
        # Without a signature there is no chain to have validated.
        cert_chain_valid=signature_present and evidence.cert_chain_valid,
        notarization_ticket_present=evidence.notarization_ticket_present,
        gpg_signature_present=gpg_present,
        whql_signed=signature_present and whql,
    )
    log.info(
        "artifact_inspected",
        artifact_id=metadata.artifact_id,
        platform=metadata.platform,
        driver_class=metadata.driver_class,
        format=metadata.format,
        signature_present=metadata.signature_present,
    )
    return metadata


# --- Module Notes -----------------------------------------------------------
# Signing tools (signtool, codesign, stapler, gpg) run in CI; their structured
# results reach us through the sidecar, so nothing here shells out or parses stdout.
