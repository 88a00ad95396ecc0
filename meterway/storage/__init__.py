"""Usage and limits storage.

The store holds users, process-wide default limits and the append-only token
usage ledger. Quota checks read it under a per-user lock.
"""

from .base import UsageStore, UsageTransaction
from .locks import KeyedLock
from .memory import InMemoryUsageStore
from .sqlite import SQLiteUsageStore

__all__ = [
    "UsageStore",
    "UsageTransaction",
    "KeyedLock",
    "InMemoryUsageStore",
    "SQLiteUsageStore",
]
