from __future__ import annotations

from typing import Any, Optional, Sequence, Union

SESSION_NOT_FOUND_CONDITION = "Session does not exist"
"""Substring of a store not-found error that identifies a deleted or expired
session, as opposed to a missing table, row or database."""


class OptimistError(Exception):
    ...


class StoreError(OptimistError):
    """Failure reported by the remote store"""

    def __init__(self, message: str = "", code: int = 0) -> None:
        super().__init__(message)
        self.code = code


class AbortedError(StoreError):
    """Optimistic concurrency conflict. The whole transaction should be
    replayed."""


class NotFoundError(StoreError):
    ...


class ConflictError(StoreError):
    """A statement of a batch update failed, typically because the row it
    inserts already exists"""


class SessionNotFound(NotFoundError):
    def __init__(
        self, message: str = SESSION_NOT_FOUND_CONDITION, code: int = 5
    ) -> None:
        super().__init__(message, code)


class QueryError(OptimistError):
    """Wraps a failure that happened while running a statement, keeping the
    SQL and the bindings around for diagnostics."""

    def __init__(
        self,
        sql: str,
        bindings: Optional[Union[Sequence[Any], dict]] = None,
        previous: Optional[BaseException] = None,
    ) -> None:
        self.sql = sql
        self.bindings = bindings if bindings is not None else []
        self.previous = previous
        super().__init__(
            f"{previous} (SQL: {sql}, bindings: {self.bindings!r})"
            if previous
            else f"Query failed (SQL: {sql}, bindings: {self.bindings!r})"
        )


class InvalidArgumentError(OptimistError, ValueError):
    ...


class NotSupportedError(OptimistError):
    ...


class LogicError(OptimistError):
    ...


class SessionPoolExhaustedError(OptimistError):
    ...


def unwrap(exc: BaseException) -> BaseException:
    if isinstance(exc, QueryError):
        return exc.previous or exc.__cause__ or exc
    return exc


def caused_by_session_not_found(exc: BaseException) -> bool:
    exc = unwrap(exc)
    return isinstance(exc, NotFoundError) and (
        SESSION_NOT_FOUND_CONDITION in str(exc)
    )


def is_aborted(exc: BaseException) -> bool:
    return isinstance(unwrap(exc), AbortedError)
