"""
MES Kernel - lot and inventory core for a multi-tenant MES backend.

Provides:
- Tenant-scoped lot persistence and read-only lot selectors
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging
- Workflow state machine value types for inventory documents
"""

__version__ = "0.1.0"
