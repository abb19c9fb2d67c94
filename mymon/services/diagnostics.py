"""Optional local HTTP endpoint exposing pool and liveness state."""

import logging
from typing import Iterator, Optional, Tuple

from prometheus_client import CollectorRegistry, start_http_server
from prometheus_client.core import GaugeMetricFamily

from .liveness import LivenessReporter
from .worker_pool import WorkerPool


class MonitorStatusCollector:
    """Reads pool and liveness state at scrape time, nothing is cached."""

    def __init__(self, liveness: LivenessReporter, pool: Optional[WorkerPool] = None):
        self.liveness = liveness
        self.pool = pool

    def collect(self) -> Iterator[GaugeMetricFamily]:
        if self.pool is not None:
            stats = self.pool.stats()
            for field in ("capacity", "free", "running", "queued", "dropped"):
                yield GaugeMetricFamily(
                    f"mymon_pool_{field}",
                    f"Worker pool {field} jobs",
                    value=getattr(stats, field)
                )

        alive = GaugeMetricFamily("mymon_target_alive", "Last liveness per target", labels=["target", "role"])
        for key, state in sorted(self.liveness.snapshot().items()):
            alive.add_metric([key, state.role.value], 1.0 if state.alive else 0.0, timestamp=state.timestamp)
        yield alive


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split "host:port" into its parts.

    Raises:
        ValueError: If the port is missing or not a number
    """
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid listen address: {address}")
    return host or "0.0.0.0", int(port)


class DiagnosticsServer:
    """Serves MonitorStatusCollector in Prometheus text format."""

    def __init__(self, address: str, liveness: LivenessReporter, logger: logging.Logger):
        self.host, self.port = parse_address(address)
        self.logger = logger.getChild(self.__class__.__name__)
        self.registry = CollectorRegistry(auto_describe=False)
        self.collector = MonitorStatusCollector(liveness)
        self.registry.register(self.collector)
        self._server = None

    def attach_pool(self, pool: WorkerPool) -> None:
        self.collector.pool = pool

    def start(self) -> None:
        self._server, _ = start_http_server(self.port, addr=self.host, registry=self.registry)
        self.logger.info(f"Diagnostics available at http://{self.host}:{self.port}/metrics")

    def stop(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
