from __future__ import annotations

import logging
from inspect import isawaitable
from typing import Any, Callable, List, Tuple

logger = logging.getLogger(__name__)

AfterCommitCallback = Callable[[], Any]


class TransactionRecords:
    """Post-commit callbacks, remembered with the nesting level they were
    registered at"""

    def __init__(self) -> None:
        self._callbacks: List[Tuple[int, AfterCommitCallback]] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, level: int, callback: AfterCommitCallback) -> None:
        self._callbacks.append((level, callback))

    def commit_level(self, level: int) -> None:
        """Hand callbacks of a committed nested level to its parent"""
        self._callbacks = [
            (level - 1 if registered == level else registered, callback)
            for registered, callback in self._callbacks
        ]

    def rollback_level(self, level: int) -> None:
        """Drop callbacks registered at `level` or deeper"""
        self._callbacks = [
            (registered, callback)
            for registered, callback in self._callbacks
            if registered < level
        ]

    def clear(self) -> None:
        self._callbacks = []

    async def run(self) -> None:
        callbacks, self._callbacks = self._callbacks, []
        logger.debug("Running %d after commit callbacks", len(callbacks))
        for _, callback in callbacks:
            result = callback()
            if isawaitable(result):
                await result
