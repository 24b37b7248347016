"""Result record produced by the query executor."""

from dataclasses import dataclass
from typing import Optional
import time
from .status import CollectionStatus


@dataclass
class CollectorResult:
    """Outcome of one collector run against one connection."""

    collector_name: str
    status: CollectionStatus
    row_count: int = 0
    duration: float = 0.0  # Seconds spent in query and transform
    error: Optional[str] = None
    timestamp: Optional[float] = None

    def __post_init__(self):
        """Set timestamp if not provided."""
        if self.timestamp is None:
            self.timestamp = time.time()
