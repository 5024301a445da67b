"""
driversign_compliance.api.routers.internal.systems

In-process implementations of the systems that on_noncompliant actions call.
"""

# Package marker.
