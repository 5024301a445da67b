"""
driversign_compliance.evaluation

Compliance Evaluator package.
"""

from driversign_compliance.evaluation.evaluator import (
    RULE_ORDER,
    Verdict,
    evaluate,
    evaluate_missing_policy,
    evaluate_unreadable,
    rule_set_hash,
)

__all__ = [
    "RULE_ORDER",
    "Verdict",
    "evaluate",
    "evaluate_missing_policy",
    "evaluate_unreadable",
    "rule_set_hash",
]
