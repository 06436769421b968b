"""
Handling of "session not found" errors.

The store deletes sessions that idle for more than an hour, and operators
may delete sessions by hand. Attempts to use such a session fail with
NOT_FOUND, and the remedy is to drop the session, lease a new one and run
the work again. Recovery only happens on the outermost, non-transactional
call path: inside a transaction the error is passed through so that the
enclosing transaction can roll back and the whole transaction is replayed.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable, Protocol, TypeVar

from optimist.config import SessionNotFoundMode
from optimist.exception import caused_by_session_not_found

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RecoveryAction(Enum):
    SURFACE = "surface"
    MAINTAIN_AND_RETRY = "maintain_and_retry"
    CLEAR_AND_RETRY = "clear_and_retry"


class RecoveryTarget(Protocol):
    def has_session_pool(self) -> bool:
        ...

    def in_transaction(self) -> bool:
        ...

    async def disconnect(self) -> None:
        ...

    async def reconnect(self) -> None:
        ...

    async def maintain_session_pool(self) -> bool:
        ...

    async def clear_session_pool(self) -> None:
        ...


class SessionRecoveryPolicy:
    def __init__(
        self,
        mode: SessionNotFoundMode = SessionNotFoundMode.CLEAR_SESSION_POOL,
    ) -> None:
        self.mode = SessionNotFoundMode.parse(mode)

    def decide(
        self,
        error: BaseException,
        failures: int,
        *,
        has_pool: bool = True,
        in_transaction: bool = False,
    ) -> RecoveryAction:
        """Map an observed error to a recovery action

        Args:
            error (BaseException): The error raised by the last attempt
            failures (int): How many session-not-found recoveries already
                happened for this call
            has_pool (bool, optional): Whether a session pool is configured.
                Defaults to `True`.
            in_transaction (bool, optional): Whether the call is nested in
                an active transaction. Defaults to `False`.

        Returns:
            RecoveryAction: What to do next
        """
        if (
            self.mode is SessionNotFoundMode.THROW_EXCEPTION
            or not has_pool
            or in_transaction
            or not caused_by_session_not_found(error)
        ):
            return RecoveryAction.SURFACE
        if failures == 0:
            return RecoveryAction.MAINTAIN_AND_RETRY
        if failures == 1 and self.mode is SessionNotFoundMode.CLEAR_SESSION_POOL:
            return RecoveryAction.CLEAR_AND_RETRY
        return RecoveryAction.SURFACE

    async def run(
        self, callback: Callable[[], Awaitable[T]], target: RecoveryTarget
    ) -> T:
        if (
            self.mode is SessionNotFoundMode.THROW_EXCEPTION
            or not target.has_session_pool()
        ):
            return await callback()

        failures = 0
        while True:
            try:
                return await callback()
            except Exception as e:
                action = self.decide(
                    e,
                    failures,
                    has_pool=target.has_session_pool(),
                    in_transaction=target.in_transaction(),
                )
                if action is RecoveryAction.SURFACE:
                    raise
                failures += 1
                logger.warning(
                    "Session not found, recovering with %s: %s",
                    action.value,
                    e,
                )
                await target.disconnect()
                if action is RecoveryAction.MAINTAIN_AND_RETRY:
                    # expired sessions are pruned; manually deleted
                    # sessions can still fail the retry
                    await target.maintain_session_pool()
                else:
                    # also invalidates sessions leased by other processes
                    # sharing the cache
                    await target.clear_session_pool()
                await target.reconnect()
