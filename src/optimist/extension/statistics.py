from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, DefaultDict, Dict

from optimist.events import MutationApplied, QueryExecuted
from optimist.registry import CounterRegistry

if TYPE_CHECKING:
    from optimist.connection import Connection


class QueryCounter:
    """Counts the statements a connection runs, by SQL verb, and the
    mutations it applies, by kind"""

    def __init__(self, connection: Connection) -> None:
        self.connection_name = connection.name
        self.reset()
        connection.listen(QueryExecuted, self.count_query)
        connection.listen(MutationApplied, self.count_mutation)
        CounterRegistry().register(self)

    def reset(self):
        self._counter: DefaultDict[str, int] = defaultdict(int)

    @property
    def counts(self) -> Dict[str, int]:
        return dict(self._counter)

    def count_query(self, event: QueryExecuted) -> None:
        words = event.sql.split(None, 1)
        query_type = words[0].lower() if words else "unknown"
        self._counter[query_type] += 1

    def count_mutation(self, event: MutationApplied) -> None:
        self._counter[f"m:{event.kind}"] += 1


class StatisticsMiddleware:
    def __init__(self, app, logger):
        self.app = app
        self.logger = logger

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            setup_query_counter()
        response = await self.app(scope, receive, send)
        if scope["type"] == "http":
            log_statistics_report(self.logger)

        return response


def setup_query_counter(*_, **__):
    for counter in CounterRegistry().values():
        counter.reset()


def log_statistics_report(logger, *_):
    COLUMN_SIZE = 6
    registry = CounterRegistry()
    if not registry:
        logger.warning("No query counters found")
        return

    keys = sorted(
        {key for counter in registry.values() for key in counter.counts}
    )
    widths = {key: max(COLUMN_SIZE, len(key)) for key in keys}
    max_name = max(len("TOTALS"), *map(len, registry.keys()))
    headers = " | ".join(
        [" " * max_name, *[key.rjust(widths[key]) for key in keys]]
    )
    row_data = [
        " | ".join(
            [
                name.rjust(max_name),
                *[
                    str(counter.counts.get(key, "-")).rjust(widths[key])
                    for key in keys
                ],
            ]
        )
        for name, counter in sorted(registry.items(), key=lambda x: x[0])
    ]
    rows = "\n".join(row_data)
    total_values: DefaultDict[str, int] = defaultdict(int)
    for counter in registry.values():
        for key, value in counter.counts.items():
            total_values[key] += value
    divider = "=" * len(headers)
    totals = " | ".join(
        [
            "TOTALS".rjust(max_name),
            *[
                str(total_values.get(key, "-")).rjust(widths[key])
                for key in keys
            ],
        ]
    )
    title = "QUERY COUNTERS".center(len(divider))

    logger.info(
        f"Query Statistics Report\n\n{title}\n\n{headers}\n"
        f"{rows}\n{divider}\n{totals}\n\n"
    )
