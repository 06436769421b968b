from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, TypeVar

from optimist.events import (
    TransactionBeginning,
    TransactionCommitted,
    TransactionCommitting,
    TransactionRolledBack,
)
from optimist.exception import (
    InvalidArgumentError,
    LogicError,
    caused_by_session_not_found,
    is_aborted,
)

from .handle import TransactionHandle
from .records import AfterCommitCallback, TransactionRecords

if TYPE_CHECKING:
    from optimist.connection import Connection

logger = logging.getLogger(__name__)

T = TypeVar("T")
TransactionCallback = Callable[["Connection"], Awaitable[T]]


class TransactionCoordinator:
    """Runs callbacks inside remote read-write transactions.

    The store has no native nesting, so only the outermost call begins and
    commits a remote transaction. Nested calls are virtual: they bump the
    level, fire their own events and hand any error to the enclosing
    transaction, which rolls back and, for aborted transactions, replays
    the whole callback.
    """

    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        self._level = 0
        self._handle: Optional[TransactionHandle] = None
        self._records = TransactionRecords()

    @property
    def level(self) -> int:
        return self._level

    @property
    def current(self) -> Optional[TransactionHandle]:
        return self._handle

    def in_transaction(self) -> bool:
        return self._level > 0

    def after_commit(self, callback: AfterCommitCallback) -> bool:
        """Queue a callback for the outermost commit. Returns `False` when
        there is no transaction to wait for."""
        if self._level == 0:
            return False
        self._records.add(self._level, callback)
        return True

    async def _dispatch(self, event) -> None:
        await self._connection.events.dispatch(event)

    async def run(
        self,
        callback: TransactionCallback,
        attempts: Optional[int] = None,
    ) -> Any:
        if self._connection.in_snapshot():
            raise LogicError(
                "Cannot start a transaction inside a snapshot."
            )
        if self._level > 0:
            return await self._run_nested(callback)

        attempts = attempts or self._connection.default_attempts
        if attempts < 1:
            raise InvalidArgumentError("attempts: must be at least 1")

        name = self._connection.name
        for attempt in range(1, attempts + 1):
            database = await self._connection.get_database()
            self._handle = await database.transaction(
                self._connection.transaction_tag
            )
            self._level = 1
            await self._dispatch(TransactionBeginning(name, level=1))

            try:
                result = await callback(self._connection)
                await self._commit()
            except BaseException as e:
                await self._rollback(e)
                if is_aborted(e) and attempt < attempts:
                    logger.info(
                        "Transaction aborted, retrying (attempt %d of %d)",
                        attempt + 1,
                        attempts,
                    )
                    continue
                raise

            await self._dispatch(TransactionCommitted(name, level=1))
            await self._records.run()
            return result

    async def _run_nested(self, callback: TransactionCallback) -> Any:
        name = self._connection.name
        self._level += 1
        level = self._level
        logger.debug("Virtual transaction level %d began", level)
        await self._dispatch(TransactionBeginning(name, level=level))

        try:
            result = await callback(self._connection)
        except BaseException:
            self._records.rollback_level(level)
            self._level = max(0, level - 1)
            raise

        self._level = level - 1
        self._records.commit_level(level)
        await self._dispatch(TransactionCommitted(name, level=level))
        return result

    async def _commit(self) -> None:
        assert self._handle is not None
        await self._dispatch(TransactionCommitting(self._connection.name))
        await self._handle.commit()
        self._level = 0
        self._handle = None

    async def _rollback(self, error: BaseException) -> None:
        """Roll back after a failure. The level is reset rather than
        decremented so that a failed commit or rollback never leaves the
        coordinator half inside a transaction."""
        handle, self._handle = self._handle, None
        self._level = 0
        self._records.clear()

        if handle is not None:
            try:
                await handle.rollback()
            except Exception as rollback_error:
                if caused_by_session_not_found(rollback_error):
                    logger.debug(
                        "Session of %s is gone, nothing to roll back", handle
                    )
                else:
                    logger.critical(
                        "Rollback of %s after %r also failed: %s",
                        handle,
                        error,
                        rollback_error,
                    )

        await self._dispatch(TransactionRolledBack(self._connection.name))
