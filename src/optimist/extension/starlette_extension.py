from __future__ import annotations

from contextlib import asynccontextmanager
from logging import INFO, Logger, basicConfig, getLogger
from typing import Optional, Sequence, Union

from optimist.config import ConnectionConfig
from optimist.exception import OptimistError
from optimist.extension.statistics import QueryCounter, StatisticsMiddleware
from optimist.optimist import ClientFactory, Optimist

try:
    from starlette.applications import Starlette

    STARLETTE_INSTALLED = True
except ModuleNotFoundError:
    STARLETTE_INSTALLED = False
    Starlette = type("Starlette", (), {})  # type: ignore


class StarletteOptimistExtension:
    def __init__(
        self,
        *,
        client_factory: ClientFactory,
        connections: Optional[Sequence[Union[ConnectionConfig, str]]] = None,
        app: Optional[Starlette] = None,
        counters: bool = False,
    ):
        if not STARLETTE_INSTALLED:
            raise OptimistError(
                "Could not locate Starlette. It must be installed to use "
                "StarletteOptimistExtension. Try: pip install starlette"
            )
        self.optimist_kwargs = {
            "client_factory": client_factory,
            "connections": connections,
        }
        self.counters = counters
        self.optimist: Optional[Optimist] = None
        if app is not None:
            self.init_app(app)

    def init_app(
        self, app: Starlette, logger: Optional[Logger] = None
    ) -> None:
        async def startup():
            self.optimist = Optimist(**self.optimist_kwargs)
            if self.counters:
                for connection in self.optimist.connections:
                    QueryCounter(connection)
            await self.optimist.connect()

        async def shutdown():
            if self.optimist is not None:
                await self.optimist.disconnect()

        lifespan_context = app.router.lifespan_context

        @asynccontextmanager
        async def lifespan(app):
            await startup()
            try:
                async with lifespan_context(app) as state:
                    yield state
            finally:
                await shutdown()

        app.router.lifespan_context = lifespan

        if self.counters:
            if logger is None:
                basicConfig(level=INFO)
                logger = getLogger("optimist")
            app.add_middleware(StatisticsMiddleware, logger=logger)
