"""Shared pytest configuration, fixtures and database fakes."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pytest
from prometheus_client import CollectorRegistry, Gauge

from mssql_exporter.collectors.base import Collector
from mssql_exporter.utils.errors import ConnectError
from mssql_exporter.utils.logger import setup_logger


@dataclass
class Slow:
    """Response that resolves to ``result`` after ``seconds``."""
    seconds: float
    result: Any = field(default_factory=list)


class FakeConnection:
    """In-memory stand-in for database.connection.Connection."""

    def __init__(self, responses: Dict[str, Any], events: List[tuple], label: str):
        self.responses = responses
        self.events = events
        self.label = label
        self.closed = False
        self.broken = False
        self.active = 0
        self.max_active = 0

    async def execute(self, query: str):
        self.events.append(("execute", self.label, query))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            response = self.responses.get(query, [])
            if isinstance(response, Slow):
                await asyncio.sleep(response.seconds)
                response = response.result
            if isinstance(response, BaseException):
                if isinstance(response, ConnectError):
                    self.broken = True
                raise response
            return [dict(row) for row in response]
        finally:
            self.active -= 1

    async def close(self):
        self.events.append(("close", self.label))
        self.closed = True


class FakeFactory:
    """
    Connection factory handing out FakeConnections.

    ``failures`` is consumed one entry per open(); a string entry makes that
    open() raise ConnectError with it as the message.
    """

    def __init__(self, responses: Dict[str, Any], events: Optional[List[tuple]] = None,
                 failures: Optional[List[Optional[str]]] = None):
        self.responses = responses
        self.events = events if events is not None else []
        self.failures = list(failures or [])
        self.opened: List[FakeConnection] = []
        self.query_timeouts: List[float] = []

    async def open(self, query_timeout: float = 15.0):
        self.events.append(("open",))
        self.query_timeouts.append(query_timeout)
        failure = self.failures.pop(0) if self.failures else None
        if failure is not None:
            raise ConnectError(failure)
        connection = FakeConnection(self.responses, self.events, label=f"conn{len(self.opened)}")
        self.opened.append(connection)
        return connection


def make_collector(name: str, events: Optional[List[tuple]] = None, registry=None,
                   is_async: bool = False, timeout: Optional[float] = None,
                   raises: Optional[Exception] = None) -> Collector:
    """Collector whose query is ``SELECT <name>`` and whose transform records its call."""

    metrics = {}
    if registry is not None:
        metrics[name] = Gauge(name, f"{name} value", registry=registry)

    def collect(rows, metrics):
        if events is not None:
            events.append(("transform", name, len(rows)))
        if raises is not None:
            raise raises
        if name in metrics:
            metrics[name].set(float(rows[0]["value"]))

    return Collector(
        name=name,
        query=f"SELECT {name}",
        collect=collect,
        metrics=metrics,
        is_async=is_async,
        timeout=timeout
    )


@pytest.fixture
def logger():
    """Create logger for tests."""
    return setup_logger("test", "DEBUG")


@pytest.fixture
def registry():
    """Fresh prometheus registry per test."""
    return CollectorRegistry()


@pytest.fixture
def events():
    """Shared ordered log of fake database activity."""
    return []
