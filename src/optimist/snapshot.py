from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from optimist.exception import LogicError
from optimist.timestamp_bound import Strong, TimestampBound
from optimist.transaction.handle import SnapshotHandle

if TYPE_CHECKING:
    from optimist.connection import Connection

logger = logging.getLogger(__name__)


class SnapshotReader:
    """Runs callbacks against a read-only snapshot.

    Every read issued by the callback sees the data as of the same
    timestamp. Snapshots do not abort, so there is no retry loop.
    """

    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        self._handle: Optional[SnapshotHandle] = None

    @property
    def current(self) -> Optional[SnapshotHandle]:
        return self._handle

    def in_snapshot(self) -> bool:
        return self._handle is not None

    async def run(
        self,
        bound: Optional[TimestampBound],
        callback: Callable[[], Awaitable[Any]],
    ) -> Any:
        if self._connection.in_transaction():
            raise LogicError(
                "Calling snapshot() inside a transaction is not supported."
            )
        if self._handle is not None:
            raise LogicError("Nested snapshots are not supported.")

        options = (bound or Strong()).transaction_options()
        database = await self._connection.get_database()
        self._handle = await database.snapshot(options)
        logger.debug("Snapshot %s opened with %s", self._handle, options)
        try:
            return await callback()
        finally:
            self._handle = None
