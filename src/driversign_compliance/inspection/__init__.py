"""
driversign_compliance.inspection

Artifact Inspector package.
"""

from driversign_compliance.inspection.inspector import artifact_digest, inspect
from driversign_compliance.inspection.models import ArtifactMetadata, SigningEvidence

__all__ = ["ArtifactMetadata", "SigningEvidence", "artifact_digest", "inspect"]
