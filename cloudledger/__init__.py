"""
CloudLedger - Source Package

Incremental sync and local cache reconciliation for a shared household
ledger whose source of truth is a remote document store.

DESIGN PRINCIPLES:
1. The remote store is the source of truth; the cache only mirrors it
2. Optimistic locally, authoritative remotely
3. A failed sync never moves the watermark
4. Every sync and mutation step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "CloudLedger Team"
