"""Collector descriptors and registry helpers."""

import logging
import time
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..utils.metrics import CollectorResult
from ..utils.status import CollectionStatus

# Bound applied to every synchronous collector's query, in seconds
SYNC_QUERY_TIMEOUT = 15.0

Rows = List[Dict[str, Any]]
MetricSet = Mapping[str, Any]
CollectFn = Callable[[Rows, MetricSet], None]


@dataclass(frozen=True, eq=False)
class Collector:
    """
    A named query plus the transform that writes its rows into metrics.

    ``metrics`` holds the prometheus_client objects this collector owns, keyed
    by metric name. ``collect(rows, metrics)`` is only ever called with at
    least one row.
    """

    name: str
    query: str
    collect: CollectFn
    metrics: MetricSet = field(default_factory=dict)
    is_async: bool = False
    timeout: Optional[float] = None

    def __post_init__(self):
        if self.is_async and (self.timeout is None or self.timeout <= 0):
            raise ValueError(f"Asynchronous collector {self.name} requires a positive timeout")

    @property
    def query_timeout(self) -> float:
        """Timeout applied to this collector's query, in seconds."""
        return self.timeout if self.is_async else SYNC_QUERY_TIMEOUT


def register_collectors(collectors: Iterable[Collector]) -> Dict[str, Collector]:
    """
    Build the ordered collector registry.

    Args:
        collectors: Collectors in execution order

    Returns:
        Dict[str, Collector]: Registry keyed by collector name

    Raises:
        ValueError: On a duplicate collector name or a metric owned twice
    """
    registry: Dict[str, Collector] = {}
    owners: Dict[str, str] = {}

    for collector in collectors:
        if collector.name in registry:
            raise ValueError(f"Collector '{collector.name}' already registered")
        for metric_name in collector.metrics:
            if metric_name in owners:
                raise ValueError(
                    f"Metric '{metric_name}' of collector '{collector.name}' "
                    f"is already owned by '{owners[metric_name]}'"
                )
            owners[metric_name] = collector.name
        registry[collector.name] = collector

    return registry


def partition(collectors: Mapping[str, Collector]) -> Tuple[List[Collector], List[Collector]]:
    """
    Split the registry by scheduling mode, keeping registration order.

    Returns:
        (synchronous, asynchronous) collector lists
    """
    synchronous = [c for c in collectors.values() if not c.is_async]
    asynchronous = [c for c in collectors.values() if c.is_async]
    return synchronous, asynchronous


def safe_collect(func):
    """
    Decorator that turns any unexpected exception into a failed result.

    Wraps ``async def method(self, connection, collector)`` so the caller
    always gets a CollectorResult back. Cancellation still propagates.

    Args:
        func: Executor method to wrap

    Returns:
        Wrapped coroutine function
    """
    @wraps(func)
    async def wrapper(self, connection, collector: Collector, *args, **kwargs):
        start = time.monotonic()
        try:
            return await func(self, connection, collector, *args, **kwargs)
        except Exception as e:
            logger = getattr(self, "logger", logging.getLogger(__name__))
            logger.error(f"Unexpected failure running metric {collector.name}: {e}", exc_info=True)
            return CollectorResult(
                collector_name=collector.name,
                status=CollectionStatus.QUERY_ERROR,
                duration=time.monotonic() - start,
                error=str(e)
            )
    return wrapper
