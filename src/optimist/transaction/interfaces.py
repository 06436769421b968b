from enum import Enum

from optimist.exception import OptimistError


class TransactionState(Enum):
    """Lifecycle states of a remote read-write transaction"""

    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class TransactionError(OptimistError):
    """Raised when a transaction handle is used after it was finalized"""

    pass
