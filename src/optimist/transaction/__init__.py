"""
Transactions over a store without native nesting.
"""

from .coordinator import TransactionCoordinator
from .handle import SnapshotHandle, TransactionHandle
from .interfaces import TransactionError, TransactionState
from .records import TransactionRecords

__all__ = [
    "SnapshotHandle",
    "TransactionCoordinator",
    "TransactionError",
    "TransactionHandle",
    "TransactionRecords",
    "TransactionState",
]
