"""MySQL status readers used by the collection pipeline."""

import logging
from typing import Any, Dict, List, Tuple

import pymysql

from ..utils.metrics import RawMetrics
from .session import ER_NO_BINARY_LOGGING, MySQLSession


# Status variables that describe current state rather than an ever-growing total
STATUS_GAUGE_PREFIXES = (
    "Threads_",
    "Open_",
    "Innodb_buffer_pool_pages_",
    "Innodb_buffer_pool_bytes_",
    "Innodb_row_lock_current_waits",
    "Innodb_num_open_files",
    "Innodb_page_size",
    "Max_used_connections",
    "Slave_open_temp_tables",
    "Uptime",
    "Rpl_semi_sync_master_clients",
    "Rpl_semi_sync_master_status",
    "Rpl_semi_sync_slave_status",
    "Qcache_free_",
    "Qcache_queries_in_cache",
    "Qcache_total_blocks",
    "Key_blocks_",
    "Ssl_",
)

GLOBAL_VARIABLES = frozenset({
    "binlog_cache_size",
    "expire_logs_days",
    "binlog_expire_logs_seconds",
    "innodb_buffer_pool_instances",
    "innodb_buffer_pool_size",
    "innodb_flush_log_at_trx_commit",
    "innodb_io_capacity",
    "innodb_log_buffer_size",
    "innodb_log_file_size",
    "innodb_max_dirty_pages_pct",
    "innodb_thread_concurrency",
    "key_buffer_size",
    "long_query_time",
    "max_allowed_packet",
    "max_connect_errors",
    "max_connections",
    "max_heap_table_size",
    "open_files_limit",
    "query_cache_size",
    "read_only",
    "slave_parallel_workers",
    "super_read_only",
    "sync_binlog",
    "table_definition_cache",
    "table_open_cache",
    "thread_cache_size",
    "tmp_table_size",
    "wait_timeout",
})

# Slave status columns forwarded as metrics; running flags become 1/0
SLAVE_RUNNING_FIELDS = ("Slave_IO_Running", "Slave_SQL_Running")
SLAVE_NUMERIC_FIELDS = (
    "Seconds_Behind_Master",
    "Read_Master_Log_Pos",
    "Exec_Master_Log_Pos",
    "Relay_Log_Pos",
    "Relay_Log_Space",
    "Last_Errno",
    "Last_IO_Errno",
    "Last_SQL_Errno",
    "Skip_Counter",
    "SQL_Delay",
)
SLAVE_COUNTERS = frozenset({"read_master_log_pos", "exec_master_log_pos", "relay_log_pos"})


def is_status_counter(name: str) -> bool:
    """True for SHOW GLOBAL STATUS names that only ever grow."""
    return not name.startswith(STATUS_GAUGE_PREFIXES)


class MySQLCollector:
    """
    Reads MySQL server state over an already open session.

    Stateless: every method takes the session owned by the calling
    pipeline and returns values without touching shared state, so one
    instance is safe to share between concurrently running pipelines.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger.getChild(self.__class__.__name__)

    def read_only(self, session: MySQLSession) -> bool:
        """
        Read the global read_only flag.

        Returns:
            bool: True if the server refuses writes from ordinary users
        """
        rows = session.query("SELECT @@GLOBAL.read_only AS read_only")
        if not rows:
            raise ValueError("SELECT @@GLOBAL.read_only returned no rows")
        return int(rows[0]["read_only"]) == 1

    def slave_status(self, session: MySQLSession) -> Tuple[bool, RawMetrics]:
        """
        Read replication status.

        Returns:
            Tuple of (is_slave, slave metrics). Metrics are empty on a master.
        """
        rows = session.query("SHOW SLAVE STATUS")
        report = RawMetrics("slave", {}, SLAVE_COUNTERS)
        if not rows:
            return False, report

        if len(rows) > 1:
            self.logger.debug(f"{len(rows)} replication channels, reporting the first")
        row = rows[0]

        for field in SLAVE_RUNNING_FIELDS:
            report.values[field.lower()] = 1 if str(row.get(field, "")).lower() == "yes" else 0

        for field in SLAVE_NUMERIC_FIELDS:
            if field not in row:
                continue
            value = row[field]
            if field == "Seconds_Behind_Master" and value is None:
                # NULL while the SQL or IO thread is stopped
                value = -1
            report.values[field.lower()] = value

        return True, report

    def global_status(self, session: MySQLSession) -> RawMetrics:
        """Read SHOW GLOBAL STATUS into a raw report."""
        values: Dict[str, Any] = {}
        counters = set()
        for row in session.query("SHOW /*!50001 GLOBAL */ STATUS"):
            name = row["Variable_name"]
            values[name.lower()] = row["Value"]
            if is_status_counter(name):
                counters.add(name.lower())
        return RawMetrics("global_status", values, frozenset(counters))

    def global_variables(self, session: MySQLSession) -> RawMetrics:
        """Read the numeric subset of SHOW GLOBAL VARIABLES."""
        values: Dict[str, Any] = {}
        for row in session.query("SHOW GLOBAL VARIABLES"):
            name = row["Variable_name"].lower()
            if name in GLOBAL_VARIABLES:
                values[name] = row["Value"]
        return RawMetrics("variables", values)

    def binary_logs(self, session: MySQLSession) -> RawMetrics:
        """
        Summarize the binary log inventory.

        Returns:
            RawMetrics: binlog count and total size (both 0 when log_bin is OFF)
        """
        try:
            rows = session.query("SHOW BINARY LOGS")
        except pymysql.err.MySQLError as e:
            if e.args and e.args[0] == ER_NO_BINARY_LOGGING:
                self.logger.debug("Binary logging disabled")
                rows = []
            else:
                raise

        total_size = sum(int(row.get("File_size") or 0) for row in rows)
        return RawMetrics("binlog", {"count": len(rows), "file_size_total": total_size})

    def processlist(self, session: MySQLSession) -> List[Dict[str, Any]]:
        """Read the active session list."""
        return session.query("SHOW FULL PROCESSLIST")
