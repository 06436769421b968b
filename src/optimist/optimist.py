from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence, Union

from optimist.base.cache import BaseCacheAdapter
from optimist.base.client import BaseClient
from optimist.cache.memory import MemoryCacheAdapter
from optimist.cache.sqlite import SQLiteCacheAdapter
from optimist.config import ConnectionConfig
from optimist.connection import Connection
from optimist.exception import OptimistError
from optimist.registry import ConnectionRegistry
from optimist.session.pool import SessionPool

logger = logging.getLogger(__name__)

ClientFactory = Callable[
    [ConnectionConfig, Optional[BaseCacheAdapter]], BaseClient
]


class Optimist:
    """Main entryway for setting up connections to the store.

    Example:

    ```python
    async def run():
        optimist = Optimist(
            connections=["spanner://my-project/my-instance/my-db"],
            client_factory=lambda config, auth_cache: MyClient(auth_cache),
        )
        await optimist.connect()
        connection = Optimist.get("main")
    ```
    """

    def __init__(
        self,
        *,
        client_factory: ClientFactory,
        connections: Optional[Sequence[Union[ConnectionConfig, str]]] = None,
    ) -> None:
        """Initializer for Optimist instance

        Every connection receives its own store client, session pool and
        cache adapters. The caches are named after the connection
        (`<name>_sessions` and `<name>_auth`) and are kept in a SQLite file
        under `cache_path` when the config sets one, in memory otherwise.

        Args:
            client_factory (ClientFactory): Builds a store client for a
                connection config and its auth cache
            connections (Sequence[Union[ConnectionConfig, str]], optional):
                Connection configs or DSNs. Defaults to `None`.
        """
        self.client_factory = client_factory
        self.connections = []
        for config in connections or []:
            self.add(config)

    def add(self, config: Union[ConnectionConfig, str]) -> Connection:
        if isinstance(config, str):
            config = ConnectionConfig.from_dsn(config)
        registry = ConnectionRegistry()
        if config.name in registry:
            raise OptimistError(
                f"Connection {config.name!r} is already registered"
            )

        auth_cache = self._make_cache(config, "auth")
        client = self.client_factory(config, auth_cache)
        session_pool = SessionPool(
            client,
            config.database_name,
            cache=self._make_cache(config, "sessions"),
            config=config.session_pool,
        )
        connection = Connection(config, client, session_pool=session_pool)
        registry.register(connection)
        self.connections.append(connection)
        return connection

    @staticmethod
    def _make_cache(config: ConnectionConfig, kind: str) -> BaseCacheAdapter:
        namespace = f"{config.name}_{kind}"
        if config.cache_path:
            return SQLiteCacheAdapter(namespace, config.cache_path)
        return MemoryCacheAdapter(namespace)

    @staticmethod
    def get(name: str = "main") -> Connection:
        """Fetch a registered connection by name

        Raises:
            OptimistError: If no connection goes by that name

        Returns:
            Connection: The connection instance
        """
        try:
            return ConnectionRegistry()[name]
        except KeyError as e:
            raise OptimistError(f"{name} has not been registered") from e

    async def connect(self) -> None:
        """Open caches, connect and warm up the session pool of every
        connection"""
        for connection in self.connections:
            if connection.client.auth_cache is not None:
                await connection.client.auth_cache.open()
            if connection.session_pool is not None:
                await connection.session_pool.cache.open()
            await connection.connect()
            created = await connection.warmup_session_pool()
            logger.info(
                "Connection %s ready (%d sessions created)",
                connection.name,
                created,
            )

    async def disconnect(self) -> None:
        for connection in self.connections:
            await connection.disconnect()
            if connection.session_pool is not None:
                await connection.session_pool.cache.close()
            if connection.client.auth_cache is not None:
                await connection.client.auth_cache.close()
            await connection.client.close()
