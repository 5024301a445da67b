"""
driversign_compliance.governance_clients

Clients for the external systems that on_noncompliant actions talk to.
"""

# Package marker.
