"""
Local Cache Package

Process-local storage of the active ledger's transactions, the per-ledger
sync watermark and the cached ledger metadata.
"""

from cloudledger.cache.interface import LocalCache, TombstoneRejectedError
from cloudledger.cache.memory import InMemoryLocalCache
from cloudledger.cache.sqlite import SqliteLocalCache

__all__ = [
    "InMemoryLocalCache",
    "LocalCache",
    "SqliteLocalCache",
    "TombstoneRejectedError",
]
