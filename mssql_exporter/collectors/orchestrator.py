"""Collection cycle orchestration.

Synchronous collectors run in registration order on the scrape's primary
connection and finish before the scrape responds. Asynchronous collectors each
get their own connection in a detached background task; their metric values
land whenever the task completes, possibly after the response was sent.
"""

import asyncio
import logging
from typing import List, Mapping, Optional, Set

from ..database.connection import ConnectionFactory
from ..utils.errors import ConnectError, QueryError
from ..utils.metrics import CollectorResult
from ..utils.status import CollectionStatus
from .base import Collector, partition
from .executor import QueryExecutor


class CollectionOrchestrator:
    """Drives collection cycles over a fixed collector registry."""

    def __init__(
        self,
        collectors: Mapping[str, Collector],
        factory: ConnectionFactory,
        executor: QueryExecutor,
        logger: logging.Logger
    ):
        """
        Initialize orchestrator.

        Args:
            collectors: Ordered registry keyed by collector name
            factory: Opens the dedicated connections of asynchronous collectors
            executor: Runs a single collector against a connection
            logger: Logger instance
        """
        self.collectors = collectors
        self.factory = factory
        self.executor = executor
        self.logger = logger.getChild("collection")
        self._background: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of background collections still running."""
        return len(self._background)

    async def collect(self, connection) -> List[CollectorResult]:
        """
        Run one collection cycle.

        Background tasks for asynchronous collectors are started first and
        not awaited. Returns once every synchronous collector has resolved.

        A timed-out statement keeps running on its session, and a lost
        session fails every later statement. In either case the session is
        closed in the background and the remaining synchronous collectors
        move to a freshly opened connection.

        Args:
            connection: Open primary connection, owned by the caller

        Returns:
            List[CollectorResult]: Synchronous results in registration order
        """
        synchronous, asynchronous = partition(self.collectors)

        for collector in asynchronous:
            self._spawn(collector)

        results = []
        current = connection
        reconnect_error = None
        try:
            for position, collector in enumerate(synchronous):
                if current is None:
                    results.append(self._unreachable(collector, reconnect_error))
                    continue

                result = await self.executor.execute(current, collector)
                results.append(result)

                if position + 1 < len(synchronous) and self._unusable(current, result):
                    self._discard(current)
                    current, reconnect_error = await self._reconnect(collector)
        finally:
            if current is not None and current is not connection:
                await current.close()

        failed = [r.collector_name for r in results if not r.status.succeeded]
        if failed:
            self.logger.warning(
                f"{len(failed)} of {len(results)} synchronous metric(s) failed",
                extra={"failed": failed}
            )
        return results

    @staticmethod
    def _unusable(connection, result: CollectorResult) -> bool:
        return result.status == CollectionStatus.TIMEOUT or connection.broken

    def _discard(self, connection) -> None:
        # Close queues behind the abandoned statement; the cycle does not wait for it
        task = asyncio.create_task(connection.close(), name="close-primary")
        self._background.add(task)
        task.add_done_callback(self._on_done)

    async def _reconnect(self, collector: Collector):
        self.logger.warning(f"Primary connection unusable after metric {collector.name}, reconnecting")
        try:
            return await self.factory.open(), None
        except ConnectError as e:
            self.logger.error(f"Error reopening connection for remaining metrics: {e}")
            return None, e

    @staticmethod
    def _unreachable(collector: Collector, error: Exception) -> CollectorResult:
        return CollectorResult(
            collector_name=collector.name,
            status=CollectionStatus.QUERY_ERROR,
            error=str(QueryError(collector.name, collector.query, cause=error))
        )

    def _spawn(self, collector: Collector) -> asyncio.Task:
        task = asyncio.create_task(
            self._collect_async(collector),
            name=f"collect-{collector.name}"
        )
        self._background.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def _collect_async(self, collector: Collector) -> Optional[CollectorResult]:
        try:
            connection = await self.factory.open(query_timeout=collector.query_timeout)
        except ConnectError as e:
            self.logger.error(f"Error creating connection for async metric {collector.name}: {e}")
            return None

        try:
            result = await self.executor.execute(connection, collector)
        finally:
            await connection.close()

        self.logger.info(
            f"Async metric {collector.name} completed",
            extra={"status": result.status.value, "duration": round(result.duration, 3)}
        )
        return result

    def _on_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            self.logger.warning(f"Background collection {task.get_name()} cancelled")
            return
        error = task.exception()
        if error is not None:
            self.logger.error(
                f"Error processing background collection {task.get_name()}: {error}",
                exc_info=error
            )

    def shutdown(self) -> int:
        """
        Cancel outstanding background collections without waiting for them.

        Returns:
            int: Number of tasks cancelled
        """
        pending = [task for task in self._background if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            self.logger.info(f"Cancelled {len(pending)} pending background collection(s)")
        return len(pending)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """
        Wait for background collections to finish.

        Args:
            timeout: Maximum seconds to wait; None waits indefinitely
        """
        if self._background:
            await asyncio.wait(set(self._background), timeout=timeout)
