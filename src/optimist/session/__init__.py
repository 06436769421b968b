from .info import SessionInfo
from .pool import SessionHandle, SessionPool
from .recovery import RecoveryAction, SessionRecoveryPolicy

__all__ = (
    "RecoveryAction",
    "SessionHandle",
    "SessionInfo",
    "SessionPool",
    "SessionRecoveryPolicy",
)
