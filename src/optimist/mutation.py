from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from optimist.events import (
    MutationApplied,
    TransactionBeginning,
    TransactionCommitted,
)
from optimist.exception import InvalidArgumentError
from optimist.values import KeyRange, KeySet, Timestamp, to_timestamp

if TYPE_CHECKING:
    from optimist.connection import Connection

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Rows = Union[Row, List[Row]]
DeleteKeys = Union[KeySet, KeyRange, List[Any], Any]

SCALAR_KEY_TYPES = (str, bytes, int, float, Decimal, date, Timestamp)


class MutationKind(Enum):
    INSERT = "insert"
    UPDATE = "update"
    INSERT_OR_UPDATE = "insert_or_update"
    DELETE = "delete"


@dataclass
class MutationSet:
    """Rows of one table, written in one blind write"""

    table: str
    kind: MutationKind
    rows: List[Row] = field(default_factory=list)
    key_set: Optional[KeySet] = None

    def __len__(self) -> int:
        if self.key_set is not None:
            return len(self.key_set.keys) + len(self.key_set.ranges)
        return len(self.rows)


def prepare_rows(rows: Optional[Rows]) -> List[Row]:
    """Normalize write input into a list of rows with store temporal values.

    A mapping whose keys are column names is a single row. A list, or a
    mapping keyed by position, is many rows.
    """
    if not rows:
        return []
    if isinstance(rows, dict):
        if all(isinstance(key, str) for key in rows):
            rows = [rows]
        else:
            rows = list(rows.values())
    return [
        {
            column: to_timestamp(value)
            if isinstance(value, datetime)
            else value
            for column, value in row.items()
        }
        for row in rows
    ]


def build_key_set(keys: DeleteKeys) -> KeySet:
    if isinstance(keys, KeySet):
        return keys
    if isinstance(keys, KeyRange):
        return KeySet(ranges=[keys])
    if isinstance(keys, (list, tuple)):
        return KeySet(keys=list(keys))
    if not isinstance(keys, SCALAR_KEY_TYPES):
        raise InvalidArgumentError(
            f"Unsupported delete keys of type {type(keys).__name__}. "
            "Use a scalar key, a list of keys, a KeyRange or a KeySet."
        )
    return KeySet(keys=[keys])


class MutationBatcher:
    """Turns write payloads into mutation sets and sends them through the
    active transaction, or as a single-use write when there is none"""

    def __init__(self, connection: Connection) -> None:
        self._connection = connection

    async def write(
        self,
        table: str,
        kind: Union[MutationKind, str],
        rows: Union[Rows, DeleteKeys],
    ) -> MutationSet:
        kind = MutationKind(kind)
        if kind is MutationKind.DELETE:
            key_set = build_key_set(rows)
            mutation_set = MutationSet(table, kind, key_set=key_set)
            values: Any = (
                key_set if key_set.ranges or key_set.all else key_set.keys
            )
        else:
            mutation_set = MutationSet(table, kind, rows=prepare_rows(rows))
            values = mutation_set.rows

        connection = self._connection
        event = MutationApplied(
            connection.name, table=table, kind=kind.value, values=values
        )

        transaction = connection.transaction_handle()
        if transaction is not None:
            await connection.events.dispatch(event)
            await transaction.batch_write(mutation_set)
            return mutation_set

        await connection.events.dispatch(
            TransactionBeginning(connection.name, level=1)
        )
        await connection.events.dispatch(event)
        database = await connection.get_database()
        await database.batch_write(mutation_set)
        logger.debug(
            "Applied %d %s mutations to %s outside of a transaction",
            len(mutation_set),
            kind.value,
            table,
        )
        await connection.events.dispatch(
            TransactionCommitted(connection.name, level=1)
        )
        return mutation_set
