"""Exception taxonomy for connection and collection failures."""

from typing import Optional


class ExporterError(Exception):
    """Base class for exporter errors."""


class ConnectError(ExporterError):
    """A database session could not be established or was lost."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class CollectionError(ExporterError):
    """Failure attributed to a single collector."""

    def __init__(self, name: str, query: str, cause: Optional[BaseException] = None):
        self.name = name
        self.query = query
        self.cause = cause
        super().__init__(self._describe())

    def _describe(self) -> str:
        return f"{self.name}: {self.cause}"


class QueryError(CollectionError):
    """The query failed or exceeded its timeout."""

    def _describe(self) -> str:
        return f"Error executing metric {self.name} SQL query: {self.cause}"


class EmptyResultError(CollectionError):
    """The query succeeded but returned no rows."""

    def _describe(self) -> str:
        return f"Query for metric {self.name} returned 0 rows to process"


class TransformError(CollectionError):
    """The row-to-metric conversion raised."""

    def _describe(self) -> str:
        return f"Error processing metric {self.name} data: {self.cause}"
