"""
Utility modules for the clinic ledger application.

Shared helpers used across the services: datetime arithmetic, JSON-safe
snapshots of ORM rows, and tenant-scoped lookups.
"""

from utils.tenant_scope import invoice_query

__all__ = ['invoice_query']
