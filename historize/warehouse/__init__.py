"""
Persisted-state access: the table store interface and its implementations.
"""

from .memory_store import InMemoryTableStore
from .store import StoreTransaction, TableStore

__all__ = [
    "InMemoryTableStore",
    "StoreTransaction",
    "TableStore",
]
