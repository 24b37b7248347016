"""Runs one collector's query and transform against an open connection."""

import asyncio
import logging
import time

from ..utils.errors import EmptyResultError, QueryError, TransformError
from ..utils.metrics import CollectorResult
from ..utils.status import CollectionStatus
from .base import Collector, safe_collect


class QueryExecutor:
    """
    Executes collectors and isolates their failures.

    Every call resolves to exactly one CollectorResult. Query, empty-result and
    transform failures are logged on the ``queries`` logger and never raised.
    The connection is left open for the caller.
    """

    def __init__(self, logger: logging.Logger):
        """
        Initialize query executor.

        Args:
            logger: Parent logger; the executor logs on its ``queries`` child
        """
        self.logger = logger.getChild("queries")

    @safe_collect
    async def execute(self, connection, collector: Collector) -> CollectorResult:
        """
        Run a collector's query with its timeout and feed rows to its transform.

        Args:
            connection: Open connection, not closed by this method
            collector: Collector to run

        Returns:
            CollectorResult: Terminal outcome of this run
        """
        name = collector.name
        query = collector.query
        timeout = collector.query_timeout
        context = {"collector": name, "query": query}
        start = time.monotonic()

        self.logger.debug(f"Executing metric {name} query: {query}", extra=context)

        try:
            rows = await asyncio.wait_for(connection.execute(query), timeout)
        except asyncio.TimeoutError:
            error = QueryError(name, query, cause=TimeoutError(f"query exceeded {timeout:g}s timeout"))
            self.logger.error(str(error), extra=context)
            return self._result(collector, CollectionStatus.TIMEOUT, start, error=error)
        except Exception as e:
            error = QueryError(name, query, cause=e)
            self.logger.error(str(error), extra=context)
            return self._result(collector, CollectionStatus.QUERY_ERROR, start, error=error)

        self.logger.debug(
            f"Retrieved metric {name} rows ({len(rows)})",
            extra={**context, "rows": rows}
        )

        if not rows:
            error = EmptyResultError(name, query)
            self.logger.error(str(error), extra=context)
            return self._result(collector, CollectionStatus.EMPTY_RESULT, start, error=error)

        try:
            collector.collect(rows, collector.metrics)
        except Exception as e:
            error = TransformError(name, query, cause=e)
            self.logger.error(str(error), exc_info=True, extra={**context, "rows": rows})
            return self._result(collector, CollectionStatus.TRANSFORM_ERROR, start, len(rows), error)

        return self._result(collector, CollectionStatus.OK, start, len(rows))

    @staticmethod
    def _result(collector, status, start, row_count=0, error=None) -> CollectorResult:
        return CollectorResult(
            collector_name=collector.name,
            status=status,
            row_count=row_count,
            duration=time.monotonic() - start,
            error=str(error) if error is not None else None
        )
