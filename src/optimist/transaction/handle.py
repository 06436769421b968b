from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Optional

from optimist.exception import ConflictError

from .interfaces import TransactionError, TransactionState

if TYPE_CHECKING:
    from optimist.database import Database
    from optimist.mutation import MutationSet
    from optimist.session.pool import SessionHandle

logger = logging.getLogger(__name__)

SNAPSHOT_EXECUTE_OPTIONS = ("types", "query_options", "request_options")


class TransactionHandle:
    """A remote read-write transaction bound to one leased session"""

    def __init__(
        self,
        database: Database,
        session: SessionHandle,
        transaction_id: str,
        tag: Optional[str] = None,
    ) -> None:
        self.database = database
        self.session = session
        self.transaction_id = transaction_id
        self.tag = tag
        self.commit_timestamp: Optional[datetime] = None
        self._state = TransactionState.ACTIVE

        logger.debug(
            "Transaction %s began on %s", self.transaction_id, self.session
        )

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is TransactionState.ACTIVE

    def _ensure_active(self) -> None:
        if not self.is_active:
            raise TransactionError(
                f"Transaction {self.transaction_id} already finalized "
                f"({self._state.value})"
            )

    def _request_options(
        self, options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        options = dict(options or {})
        if self.tag is not None:
            options["request_options"] = {
                **options.get("request_options", {}),
                "transaction_tag": self.tag,
            }
        return options

    def execute(
        self, sql: str, params: Any, options: Dict[str, Any]
    ) -> AsyncIterator[Dict[str, Any]]:
        self._ensure_active()
        options = {**options, "transaction": {"id": self.transaction_id}}
        return self.database._stream(self.session, sql, params, options)

    async def execute_update(
        self, sql: str, params: Any, options: Optional[Dict[str, Any]] = None
    ) -> int:
        self._ensure_active()
        client = self.database.client
        return await self.database._guard(
            self.session,
            client.execute_update(
                self.session.name,
                self.transaction_id,
                sql,
                params,
                self._request_options(options),
            ),
        )

    async def execute_batch_update(
        self, sql: str, params: Any, options: Optional[Dict[str, Any]] = None
    ) -> int:
        """Run one statement through the batch update RPC. A failed
        statement is reported as a status rather than an error, and is
        raised here as `ConflictError`."""
        self._ensure_active()
        client = self.database.client
        row_counts, error = await self.database._guard(
            self.session,
            client.execute_batch_update(
                self.session.name,
                self.transaction_id,
                [{"sql": sql, "params": params}],
                self._request_options(options),
            ),
        )
        if error is not None:
            raise ConflictError(
                error.get("message", ""), error.get("code", 0)
            )
        return sum(row_counts)

    async def batch_write(self, mutation_set: MutationSet) -> None:
        self._ensure_active()
        client = self.database.client
        await self.database._guard(
            self.session,
            client.batch_write(
                self.session.name, self.transaction_id, mutation_set
            ),
        )

    async def commit(self) -> Optional[datetime]:
        self._ensure_active()
        client = self.database.client
        self.commit_timestamp = await self.database._guard(
            self.session,
            client.commit(
                self.session.name,
                self.transaction_id,
                self._request_options(),
            ),
        )
        self._state = TransactionState.COMMITTED
        logger.debug("Transaction %s committed", self.transaction_id)
        return self.commit_timestamp

    async def rollback(self) -> None:
        """Roll back the remote transaction. Only an active transaction on a
        session that still exists is rolled back remotely."""
        if not self.is_active:
            return
        try:
            if self.transaction_id and self.session.valid:
                await self.database._guard(
                    self.session,
                    self.database.client.rollback(
                        self.session.name, self.transaction_id
                    ),
                )
        finally:
            self._state = TransactionState.ROLLED_BACK
        logger.debug("Transaction %s rolled back", self.transaction_id)

    def __str__(self) -> str:
        return (
            f"<TransactionHandle {self.transaction_id} ({self._state.value})>"
        )


class SnapshotHandle:
    """A read-only transaction. Every read through the handle sees the data
    as of the same timestamp."""

    def __init__(
        self,
        database: Database,
        session: SessionHandle,
        transaction_id: str,
        options: Dict[str, Any],
    ) -> None:
        self.database = database
        self.session = session
        self.transaction_id = transaction_id
        self.options = options

    def execute(
        self, sql: str, params: Any, options: Dict[str, Any]
    ) -> AsyncIterator[Dict[str, Any]]:
        options = {
            key: value
            for key, value in options.items()
            if key in SNAPSHOT_EXECUTE_OPTIONS
        }
        options["transaction"] = {"id": self.transaction_id}
        return self.database._stream(self.session, sql, params, options)

    def __str__(self) -> str:
        return f"<SnapshotHandle {self.transaction_id}>"
