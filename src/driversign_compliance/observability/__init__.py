"""
driversign_compliance.observability

Observability package.

Responsibilities:
- Structured logging configuration.
- Request and artifact context propagation for consistent log enrichment.
"""

# Package marker.
