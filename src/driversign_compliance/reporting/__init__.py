"""
driversign_compliance.reporting

Compliance report models and aggregation.
"""

from driversign_compliance.reporting.report import (
    ComplianceReport,
    VerdictEntry,
    build_report,
    verdict_entry,
)

__all__ = ["ComplianceReport", "VerdictEntry", "build_report", "verdict_entry"]
