"""
driversign_compliance.db

Persistence package (SQLAlchemy async).

Responsibilities:
- Provide ORM models, engine/session setup, and repositories for the verdict
  cache, the dispatch ledger, and the in-process ticket/notification systems.
"""

# Package marker.
