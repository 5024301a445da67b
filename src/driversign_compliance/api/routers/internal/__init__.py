"""
driversign_compliance.api.routers.internal

Internal systems API package.

Responsibilities:
- Host the ticket and notification systems under `/internal/v1/*`.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# In production, these endpoints are replaced by the organisation's real ticketing
# and chat systems; only `governance_clients.internal_http` needs to change.
