from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from optimist.exception import LogicError

if TYPE_CHECKING:
    from optimist.connection import Connection

logger = logging.getLogger(__name__)


class PartitionedDmlExecutor:
    """Bulk UPDATE and DELETE run by the store across its partitions.

    Partitioned DML is not transactional and is not retried here. A zero
    row count means nothing matched and is not an error.
    """

    def __init__(self, connection: Connection) -> None:
        self._connection = connection

    async def run(self, sql: str, bindings: Optional[Any] = None) -> int:
        connection = self._connection
        if connection.in_transaction():
            raise LogicError(
                "Partitioned DML cannot run inside a transaction."
            )
        bindings = connection.prepare_bindings(bindings or [])

        async def execute(sql: str, bindings: Any) -> int:
            database = await connection.get_database()
            return await database.execute_partitioned_update(
                sql, bindings, connection.request_options()
            )

        row_count = await connection.run(sql, bindings, execute)
        connection.records_have_been_modified(row_count > 0)
        logger.debug("Partitioned DML modified %d rows", row_count)
        return row_count
