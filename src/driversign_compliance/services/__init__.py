"""
driversign_compliance.services

Service layer.

Responsibilities:
- Own transaction boundaries and compose inspector, policy store, evaluator and dispatcher.
"""

# Package marker.
