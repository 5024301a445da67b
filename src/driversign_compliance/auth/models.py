"""
driversign_compliance.auth.models

Auth domain models.

Responsibilities:
- Define the authenticated identity type (`Principal`) injected into endpoints.
- Name the roles the API enforces.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_ADMIN = "admin"
ROLE_COMPLIANCE_OPERATOR = "compliance_operator"
ROLE_POLICY_ADMIN = "policy_admin"
ROLE_INTERNAL_SYSTEM = "internal_system"

KNOWN_ROLES = frozenset(
    {ROLE_ADMIN, ROLE_COMPLIANCE_OPERATOR, ROLE_POLICY_ADMIN, ROLE_INTERNAL_SYSTEM}
)


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity.
    """

    subject: str
    roles: frozenset[str]

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles
