"""
Lease Kernel - occupancy, invoice and payment consistency core

A multi-tenant residential leasing core with:
- Company-scoped access on every read and write
- At most one active occupancy per apartment, enforced in storage
- Per-occupancy atomic bulk invoice generation with partial-failure reporting
- Race-safe payment application (no overpayment)
- Soft deletion and post-commit audit events
"""

__version__ = "0.1.0"
