"""
driversign_compliance.errors

Domain-specific exceptions.

Responsibilities:
- Give each failure class of the evaluator a distinct, structured exception.
- Keep handling decisions (fail closed, surface, retry) at the call sites that own them.
"""

from __future__ import annotations


class ComplianceError(Exception):
    """Base class for all evaluator errors."""


class PolicyLoadError(ComplianceError):
    """Policy document is missing, not valid YAML, or fails schema validation."""


class NotFoundError(ComplianceError):
    """
    No policy matches the artifact's (platform, driver_class).
    Callers must fail closed: the artifact is non-compliant, never skipped.
    """

    def __init__(self, platform: str, driver_class: str) -> None:
        self.platform = platform
        self.driver_class = driver_class
        super().__init__(f"no policy for platform={platform!r} driver_class={driver_class!r}")


PolicyNotFoundError = NotFoundError


class UnreadableArtifact(ComplianceError):
    """
    The artifact cannot be parsed for its platform's signature format.
    A malformed artifact is a policy concern, so this is never retried.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class DispatchError(ComplianceError):
    """An on_noncompliant action still failed after every retry attempt."""

    def __init__(self, *, action: str, artifact_id: str, attempts: int, detail: str = "") -> None:
        self.action = action
        self.artifact_id = artifact_id
        self.attempts = attempts
        self.detail = detail
        super().__init__(
            f"action {action!r} for {artifact_id} failed after {attempts} attempt(s): {detail}"
        )


class UnexpectedResponse(ComplianceError):
    """A ticket or notification system answered 2xx with a body we cannot use."""

    def __init__(self, *, endpoint: str, detail: str) -> None:
        self.endpoint = endpoint
        self.detail = detail
        super().__init__(f"unexpected response from {endpoint}: {detail}")


# --- Module Notes -----------------------------------------------------------
# The API layer maps these to HTTP statuses in `api.app`; the CLI maps them to exit codes.
