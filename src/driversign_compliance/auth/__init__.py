"""
driversign_compliance.auth

Bearer-token auth for the API and for the dispatcher's calls to internal systems.

Responsibilities:
- Token issue/validation and the `Principal` it yields.
- Role checks as FastAPI dependencies.
"""

# Package marker.
