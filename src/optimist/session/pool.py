from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from optimist.base.cache import BaseCacheAdapter
from optimist.base.client import BaseClient
from optimist.cache.memory import MemoryCacheAdapter
from optimist.config import SessionPoolConfig
from optimist.exception import NotFoundError, SessionPoolExhaustedError

from .info import SessionInfo

logger = logging.getLogger(__name__)

POOL_KEY = "pool"

T = TypeVar("T")


@dataclass
class SessionHandle:
    """A leased session. Never shared by two concurrent transactions."""

    name: str
    created_at: float
    pooled: bool = True
    valid: bool = True

    def invalidate(self) -> None:
        self.valid = False

    def __str__(self) -> str:
        status = "valid" if self.valid else "invalid"
        return f"<SessionHandle {self.name} ({status})>"


class SessionPool:
    """Leases session handles backed by the remote store.

    Pool state is kept as a single opaque blob in a cache adapter so that it
    can be shared by every process pointing at the same cache. Every change
    to the state is one atomic cache update; remote calls happen outside of
    it.
    """

    def __init__(
        self,
        client: BaseClient,
        database: str,
        cache: Optional[BaseCacheAdapter] = None,
        config: Optional[SessionPoolConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._database = database
        self._cache = cache or MemoryCacheAdapter("sessions")
        self._config = config or SessionPoolConfig()
        self._clock = clock

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self._database}>"

    @property
    def config(self) -> SessionPoolConfig:
        return self._config

    @property
    def cache(self) -> BaseCacheAdapter:
        return self._cache

    def _decode(self, raw: Optional[bytes]) -> Dict[str, Any]:
        if not raw:
            return {"available": [], "leased": {}}
        return json.loads(raw)

    async def _load(self) -> Dict[str, Any]:
        return self._decode(await self._cache.get(POOL_KEY))

    async def _update(self, change: Callable[[Dict[str, Any]], T]) -> T:
        """Apply `change` to the pool state in one atomic cache update.
        `change` mutates the state in place and must not await."""

        def updater(raw: Optional[bytes]) -> Tuple[bytes, T]:
            state = self._decode(raw)
            result = change(state)
            return json.dumps(state).encode(), result

        return await self._cache.update(POOL_KEY, updater)

    def _is_expired(self, record: Dict[str, Any], now: float) -> bool:
        return record["expires_at"] <= now

    def _total(self, state: Dict[str, Any]) -> int:
        return len(state["available"]) + len(state["leased"])

    async def _create_record(self, now: float) -> Dict[str, Any]:
        session = await self._client.create_session(self._database)
        logger.debug("Created session %s", session["name"])
        return {
            "name": session["name"],
            "created_at": now,
            "last_used_at": now,
            "expires_at": now + self._config.session_expiration,
        }

    async def _delete_remote(self, names: List[str]) -> None:
        for name in names:
            try:
                await self._client.delete_session(name)
            except NotFoundError:
                logger.debug("Session %s was already gone", name)

    def _exhausted(self) -> SessionPoolExhaustedError:
        return SessionPoolExhaustedError(
            f"All {self._config.max_sessions} sessions of "
            f"{self._database} are leased"
        )

    async def acquire(self) -> SessionHandle:
        """Lease a session, reusing an available one when possible

        A new session is created outside of the cache update and only
        recorded afterwards, so other users of the cache are never blocked
        by the store.

        Raises:
            SessionPoolExhaustedError: If `max_sessions` are already leased

        Returns:
            SessionHandle: The leased session
        """
        now = self._clock()
        expired: List[str] = []

        def lease(state: Dict[str, Any]) -> Tuple[Optional[Dict], bool]:
            while state["available"]:
                candidate = state["available"].pop(0)
                if not self._is_expired(candidate, now):
                    state["leased"][candidate["name"]] = candidate
                    return candidate, True
                expired.append(candidate["name"])
            return None, self._total(state) < self._config.max_sessions

        record, has_room = await self._update(lease)
        if expired:
            logger.debug("Skipped expired sessions %s", expired)
            await self._delete_remote(expired)
        if record is None:
            if not has_room:
                raise self._exhausted()
            record = await self._create_record(now)

            def commit(state: Dict[str, Any]) -> bool:
                if self._total(state) >= self._config.max_sessions:
                    return False
                state["leased"][record["name"]] = record
                return True

            if not await self._update(commit):
                await self._delete_remote([record["name"]])
                raise self._exhausted()

        logger.debug("Leased session %s", record["name"])
        return SessionHandle(record["name"], record["created_at"])

    async def release(self, handle: SessionHandle) -> None:
        """Give a session back. Invalid sessions are dropped from the pool
        instead of being made available again."""
        now = self._clock()

        def give_back(state: Dict[str, Any]) -> bool:
            record = state["leased"].pop(handle.name, None)
            if not handle.valid or record is None:
                return False
            record["last_used_at"] = now
            record["expires_at"] = now + self._config.session_expiration
            state["available"].append(record)
            return True

        if await self._update(give_back):
            logger.debug("Released session %s", handle.name)
        else:
            logger.warning("Dropped session %s from the pool", handle.name)

    async def warmup(self) -> int:
        """Create sessions until the pool holds `min_sessions`

        Sessions created concurrently by another user of the cache count
        towards the minimum; surplus sessions are deleted again.

        Returns:
            int: Number of sessions added to the pool by this call
        """
        now = self._clock()
        state = await self._load()
        missing = max(self._config.min_sessions - self._total(state), 0)
        records = [await self._create_record(now) for _ in range(missing)]

        def add(state: Dict[str, Any]) -> List[str]:
            room = max(self._config.min_sessions - self._total(state), 0)
            state["available"].extend(records[:room])
            return [record["name"] for record in records[room:]]

        surplus = await self._update(add) if records else []
        await self._delete_remote(surplus)
        created = len(records) - len(surplus)
        logger.info("Warmed up %d sessions for %s", created, self._database)
        return created

    async def maintain(self) -> int:
        """Prune expired sessions

        Returns:
            int: Number of pruned sessions
        """
        now = self._clock()

        def prune(state: Dict[str, Any]) -> List[str]:
            expired = [
                record["name"]
                for record in state["available"]
                if self._is_expired(record, now)
            ]
            state["available"] = [
                record
                for record in state["available"]
                if not self._is_expired(record, now)
            ]
            return expired

        expired = await self._update(prune)
        await self._delete_remote(expired)
        logger.info("Pruned %d expired sessions", len(expired))
        return len(expired)

    async def clear(self) -> None:
        """Delete every known session and empty the cache. Live leases
        become invalid."""

        def empty(raw: Optional[bytes]) -> Tuple[None, List[str]]:
            state = self._decode(raw)
            names = [record["name"] for record in state["available"]]
            names.extend(state["leased"])
            return None, names

        names = await self._cache.update(POOL_KEY, empty)
        await self._cache.clear()
        await self._delete_remote(names)
        logger.info("Cleared %d sessions of %s", len(names), self._database)

    async def list(self) -> List[SessionInfo]:
        records = await self._client.list_sessions(self._database)
        return [SessionInfo.from_record(record) for record in records]

    async def stats(self) -> Dict[str, int]:
        state = await self._load()
        return {
            "available": len(state["available"]),
            "leased": len(state["leased"]),
        }
