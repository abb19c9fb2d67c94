"""Storage-engine diagnostic readers producing a common key/value report."""

import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple, Type

from ..utils.metrics import RawMetrics
from .session import MySQLSession


class EngineDiagnostics(ABC):
    """Strategy interface for engine-specific internal state."""

    name: str = ""

    @abstractmethod
    def read(self, session: MySQLSession) -> RawMetrics:
        """
        Read the engine's internal state.

        Args:
            session: Open session owned by the calling pipeline

        Returns:
            RawMetrics: Values keyed by field name

        Raises:
            Exception: Any query or parse error (the step is required)
        """
        pass


class InnoDBStatusDiagnostics(EngineDiagnostics):
    """Parses the text blob returned by SHOW ENGINE INNODB STATUS."""

    name = "innodb_status"

    # (regex, field names, counter?) applied line by line
    PATTERNS: List[Tuple[re.Pattern, Tuple[str, ...], bool]] = [
        (re.compile(r"^History list length (\d+)"), ("history_list_length",), False),
        (re.compile(r"^Log sequence number\s+(\d+)"), ("log_sequence_number",), True),
        (re.compile(r"^Log flushed up to\s+(\d+)"), ("log_flushed_up_to",), True),
        (re.compile(r"^Pages flushed up to\s+(\d+)"), ("pages_flushed_up_to",), True),
        (re.compile(r"^Last checkpoint at\s+(\d+)"), ("last_checkpoint_at",), True),
        (re.compile(r"^Trx id counter (\d+)"), ("trx_id_counter",), True),
        (re.compile(r"^Buffer pool size\s+(\d+)"), ("buffer_pool_size",), False),
        (re.compile(r"^Free buffers\s+(\d+)"), ("free_buffers",), False),
        (re.compile(r"^Database pages\s+(\d+)"), ("database_pages",), False),
        (re.compile(r"^Modified db pages\s+(\d+)"), ("modified_db_pages",), False),
        (
            re.compile(r"^Number of rows inserted (\d+), updated (\d+), deleted (\d+), read (\d+)"),
            ("rows_inserted", "rows_updated", "rows_deleted", "rows_read"),
            True,
        ),
        (
            re.compile(r"^Mutex spin waits (\d+), rounds (\d+), OS waits (\d+)"),
            ("mutex_spin_waits", "mutex_spin_rounds", "mutex_os_waits"),
            True,
        ),
        (
            re.compile(r"^RW-shared spins (\d+), rounds (\d+), OS waits (\d+)"),
            ("rw_shared_spins", "rw_shared_rounds", "rw_shared_os_waits"),
            True,
        ),
        (
            re.compile(r"^RW-excl spins (\d+), rounds (\d+), OS waits (\d+)"),
            ("rw_excl_spins", "rw_excl_rounds", "rw_excl_os_waits"),
            True,
        ),
        (
            re.compile(r"^OS WAIT ARRAY INFO: reservation count (\d+)(?:, signal count (\d+))?"),
            ("os_wait_reservation_count", "os_wait_signal_count"),
            True,
        ),
        (re.compile(r"^OS WAIT ARRAY INFO: signal count (\d+)"), ("os_wait_signal_count",), True),
        (
            re.compile(r"^Ibuf: size (\d+), free list len (\d+), seg size (\d+), (\d+) merges"),
            ("ibuf_size", "ibuf_free_list_len", "ibuf_seg_size", "ibuf_merges"),
            False,
        ),
        (
            re.compile(r"^Pending flushes \(fsync\) log: (\d+); buffer pool: (\d+)"),
            ("pending_log_flushes", "pending_buffer_pool_flushes"),
            False,
        ),
        (
            re.compile(r"^(\d+) queries inside InnoDB, (\d+) queries in queue"),
            ("queries_inside", "queries_queued"),
            False,
        ),
        (re.compile(r"^(\d+) read views open inside InnoDB"), ("read_views_open",), False),
    ]

    def read(self, session: MySQLSession) -> RawMetrics:
        rows = session.query("SHOW ENGINE INNODB STATUS")
        if not rows:
            raise ValueError("SHOW ENGINE INNODB STATUS returned no rows")
        return self.parse(rows[0].get("Status") or "")

    def parse(self, text: str) -> RawMetrics:
        """
        Extract numeric fields from the status text.

        Args:
            text: Value of the Status column

        Returns:
            RawMetrics: Parsed values (category "innodb")
        """
        values: Dict[str, Any] = {}
        counters = set()
        active_transactions = 0
        lock_waits = 0

        for raw_line in text.splitlines():
            line = raw_line.strip()
            if line.startswith("---TRANSACTION") and "ACTIVE" in line:
                active_transactions += 1
            if "LOCK WAIT" in line:
                lock_waits += 1

            for pattern, names, is_counter in self.PATTERNS:
                match = pattern.match(line)
                if not match:
                    continue
                for name, value in zip(names, match.groups()):
                    if value is None:
                        continue
                    values[name] = value
                    if is_counter:
                        counters.add(name)
                break

        values["active_transactions"] = active_transactions
        values["lock_wait_transactions"] = lock_waits
        return RawMetrics("innodb", values, frozenset(counters))


class InnoDBMetricsDiagnostics(EngineDiagnostics):
    """Reads enabled counters from information_schema.INNODB_METRICS."""

    name = "innodb_metrics"

    QUERY = (
        "SELECT NAME, COUNT, TYPE FROM information_schema.INNODB_METRICS "
        "WHERE STATUS = 'enabled'"
    )

    def read(self, session: MySQLSession) -> RawMetrics:
        values: Dict[str, Any] = {}
        counters = set()
        for row in session.query(self.QUERY):
            name = str(row["NAME"]).lower()
            values[name] = row["COUNT"]
            # value/status_counter types are gauges, counter/set_owner types grow
            if str(row.get("TYPE", "")).lower() in ("counter", "set_owner", "set_member"):
                counters.add(name)
        return RawMetrics("innodb", values, frozenset(counters))


ENGINE_DIAGNOSTICS: Dict[str, Type[EngineDiagnostics]] = {
    InnoDBStatusDiagnostics.name: InnoDBStatusDiagnostics,
    InnoDBMetricsDiagnostics.name: InnoDBMetricsDiagnostics,
}


def get_engine_diagnostics(name: str) -> EngineDiagnostics:
    """
    Look up a diagnostics strategy by name.

    Raises:
        ValueError: If no strategy is registered under that name
    """
    try:
        return ENGINE_DIAGNOSTICS[name]()
    except KeyError:
        raise ValueError(
            f"Unknown engine diagnostics '{name}', "
            f"expected one of: {', '.join(sorted(ENGINE_DIAGNOSTICS))}"
        ) from None
