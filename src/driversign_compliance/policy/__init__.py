"""
driversign_compliance.policy

Policy package: document schema and the snapshot-based Policy Store.
"""

from driversign_compliance.policy.models import (
    DEFAULT_ACTIONS,
    Policy,
    PolicyDocument,
    PolicySnapshot,
    RuleSet,
)
from driversign_compliance.policy.store import PolicyStore, build_snapshot, load_policy_file

__all__ = [
    "DEFAULT_ACTIONS",
    "Policy",
    "PolicyDocument",
    "PolicySnapshot",
    "PolicyStore",
    "RuleSet",
    "build_snapshot",
    "load_policy_file",
]
