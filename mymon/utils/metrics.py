"""Metric data structures shared by the pipeline, assembler and publisher."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
import time

from .status import Role


class MetricKind(Enum):
    """Counter type understood by the metrics agent."""

    COUNTER = "COUNTER"
    GAUGE = "GAUGE"


@dataclass
class RawMetrics:
    """Unconverted key/value output of one collection step."""

    category: str
    values: Dict[str, Any] = field(default_factory=dict)
    counters: FrozenSet[str] = frozenset()

    def is_counter(self, name: str) -> bool:
        return name in self.counters


@dataclass(frozen=True)
class MetricRecord:
    """One metric value as forwarded to the agent."""

    name: str
    value: float
    tags: Dict[str, str]
    timestamp: int
    kind: MetricKind = MetricKind.GAUGE
    endpoint: str = ""
    step: int = 60

    def to_payload(self) -> dict:
        """
        Serialize to the agent push format.

        Returns:
            dict: endpoint/metric/timestamp/step/value/counterType/tags item
        """
        return {
            "endpoint": self.endpoint,
            "metric": self.name,
            "timestamp": self.timestamp,
            "step": self.step,
            "value": self.value,
            "counterType": self.kind.value,
            "tags": ",".join(f"{k}={v}" for k, v in sorted(self.tags.items())),
        }


@dataclass
class CollectionResult:
    """Outcome of one pipeline run for one target."""

    target_key: str
    success: bool
    elapsed: float = 0.0
    metrics: List[MetricRecord] = field(default_factory=list)
    error: Optional[BaseException] = None
    role: Role = Role.READ_ONLY_UNKNOWN
    read_only: bool = False
    published: bool = False
    timestamp: Optional[float] = None

    def __post_init__(self):
        """Set timestamp if not provided."""
        if self.timestamp is None:
            self.timestamp = time.time()
        # All-or-nothing: a failed run never carries partial metrics
        if not self.success:
            self.metrics = []
