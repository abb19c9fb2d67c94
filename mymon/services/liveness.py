"""Up/down and role reporting, independent of the metric publish outcome."""

import logging
import threading
from typing import Dict, List

from ..config.models import TargetConfig
from ..utils.errors import PublishError
from ..utils.metrics import CollectionResult, MetricKind, MetricRecord
from ..utils.status import LivenessState, Role
from .publisher import FalconPublisher


class LivenessReporter:
    """
    Derive and emit a LivenessState per target per tick.

    The latest state per target is kept for observability only; pipelines
    never read it back, role and read-only are always recomputed.
    """

    def __init__(self, publisher: FalconPublisher, default_step: int, logger: logging.Logger):
        """
        Initialize liveness reporter.

        Args:
            publisher: Publisher used to emit the liveness metrics
            default_step: Step written to records when the target has no override
            logger: Logger instance
        """
        self.publisher = publisher
        self.default_step = default_step
        self.logger = logger.getChild(self.__class__.__name__)
        self._lock = threading.Lock()
        self._latest: Dict[str, LivenessState] = {}

    def report(self, target: TargetConfig, result: CollectionResult) -> LivenessState:
        """
        Record and emit the liveness of one pipeline run.

        Args:
            target: Target the run belonged to
            result: Outcome of required steps 1-8

        Returns:
            LivenessState: alive iff the required steps succeeded
        """
        state = LivenessState(
            target_key=target.key,
            alive=result.success,
            role=result.role,
            read_only=result.read_only,
        )

        with self._lock:
            self._latest[target.key] = state

        log = self.logger.info if state.alive else self.logger.warning
        log(
            f"{state.to_emoji()} {target.key} alive={int(state.alive)} role={state.role.value}",
            extra={
                "target": target.key,
                "alive": state.alive,
                "role": state.role.value,
                "error_type": type(result.error).__name__ if result.error else None,
            }
        )

        try:
            self.publisher.push(self.to_records(target, state), agent_url=target.agent_url)
        except PublishError as e:
            self.logger.error(
                f"Failed to emit liveness for {target.key}: {e}",
                extra={"target": target.key, "body": e.body}
            )

        return state

    def to_records(self, target: TargetConfig, state: LivenessState) -> List[MetricRecord]:
        """Liveness as metrics, so a silent monitor is itself detectable."""
        tags = dict(target.tags)
        # Identical whether the target is up or down
        tags.update({
            "port": str(target.database.port),
            "type": "mysql",
        })

        common = {
            "tags": tags,
            "timestamp": int(state.timestamp),
            "endpoint": target.endpoint_name,
            "step": target.step or self.default_step,
            "kind": MetricKind.GAUGE,
        }

        records = [MetricRecord(name="mysql.alive", value=1.0 if state.alive else 0.0, **common)]
        if state.alive:
            records.append(MetricRecord(
                name="mysql.is_slave", value=1.0 if state.role is Role.SLAVE else 0.0, **common
            ))
            records.append(MetricRecord(
                name="mysql.read_only", value=1.0 if state.read_only else 0.0, **common
            ))
        return records

    def snapshot(self) -> Dict[str, LivenessState]:
        """Latest state per target key."""
        with self._lock:
            return dict(self._latest)
