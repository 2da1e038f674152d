"""Conduit - data integration and access-control core.

Turns stored, encrypted data-source definitions into live authenticated
connectors, caches connectors/health/query results, and gates privileged
operations through a role-based permission engine.
"""

__version__ = "0.1.0"
