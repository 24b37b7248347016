"""Collection outcome enumeration."""

from enum import Enum


class CollectionStatus(Enum):
    """Terminal outcome of running one collector."""

    OK = "ok"
    QUERY_ERROR = "query_error"
    TIMEOUT = "timeout"
    EMPTY_RESULT = "empty_result"
    TRANSFORM_ERROR = "transform_error"

    @property
    def succeeded(self) -> bool:
        """Whether the collector updated its metrics."""
        return self is CollectionStatus.OK
