"""Shared pytest configuration and fixtures."""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from unittest.mock import Mock

import pymysql
import pytest

from mymon.collectors.mysql_collector import MySQLCollector
from mymon.config.models import DatabaseConfig, MonitorSettings, TargetConfig
from mymon.pipeline import CollectorPipeline
from mymon.services.assembler import MetricAssembler
from mymon.services.liveness import LivenessReporter
from mymon.services.publisher import FalconPublisher
from mymon.services.snapshot import ProcesslistSnapshot
from mymon.utils.errors import TargetConnectionError
from mymon.utils.logger import setup_logger


INNODB_STATUS_SAMPLE = """
=====================================
2024-05-01 10:00:00 0x7f INNODB MONITOR OUTPUT
=====================================
----------
SEMAPHORES
----------
OS WAIT ARRAY INFO: reservation count 42
OS WAIT ARRAY INFO: signal count 40
RW-shared spins 10, rounds 20, OS waits 5
RW-excl spins 3, rounds 6, OS waits 1
------------
TRANSACTIONS
------------
Trx id counter 5012
Purge done for trx's n:o < 5010 undo n:o < 0 state: running but idle
History list length 17
LIST OF TRANSACTIONS FOR EACH SESSION:
---TRANSACTION 421, not started
---TRANSACTION 5011, ACTIVE 3 sec starting index read
mysql tables in use 1, locked 1
LOCK WAIT 2 lock struct(s), heap size 1136, 1 row lock(s)
---TRANSACTION 5010, ACTIVE 7 sec
-------------------------------------
INSERT BUFFER AND ADAPTIVE HASH INDEX
-------------------------------------
Ibuf: size 1, free list len 0, seg size 2, 0 merges
---
LOG
---
Log sequence number          19145826
Log flushed up to            19145826
Pages flushed up to          19145826
Last checkpoint at           19145817
Pending flushes (fsync) log: 0; buffer pool: 0
----------------------
BUFFER POOL AND MEMORY
----------------------
Buffer pool size   8192
Free buffers       7000
Database pages     1180
Modified db pages  3
--------------
ROW OPERATIONS
--------------
0 queries inside InnoDB, 0 queries in queue
1 read views open inside InnoDB
Number of rows inserted 100, updated 20, deleted 5, read 9000
----------------------------
END OF INNODB MONITOR OUTPUT
"""


def healthy_responses() -> Dict[str, Any]:
    """Query prefix -> rows for a healthy, writable master."""
    return {
        "SELECT @@GLOBAL.read_only": [{"read_only": 0}],
        "SHOW SLAVE STATUS": [],
        "SHOW /*!50001 GLOBAL */ STATUS": [
            {"Variable_name": "Com_select", "Value": "100"},
            {"Variable_name": "Threads_connected", "Value": "5"},
            {"Variable_name": "Ssl_cipher", "Value": ""},
        ],
        "SHOW GLOBAL VARIABLES": [
            {"Variable_name": "max_connections", "Value": "151"},
            {"Variable_name": "datadir", "Value": "/var/lib/mysql/"},
        ],
        "SHOW ENGINE INNODB STATUS": [
            {"Type": "InnoDB", "Name": "", "Status": INNODB_STATUS_SAMPLE}
        ],
        "SHOW BINARY LOGS": [
            {"Log_name": "binlog.000001", "File_size": 1000},
            {"Log_name": "binlog.000002", "File_size": 500},
        ],
        "SHOW FULL PROCESSLIST": [
            {"Id": 1, "User": "monitor", "Command": "Query", "Time": 0, "Info": "SHOW FULL PROCESSLIST"},
        ],
    }


class FakeSession:
    """
    In-memory stand-in for MySQLSession.

    Responses map a query prefix to rows, an exception to raise, or a
    callable taking the session. block_on() makes a query hang until
    abort() is called, like a real socket shutdown would.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.responses = healthy_responses() if responses is None else responses
        self.queries = []
        self.aborted = threading.Event()
        self.closed = False

    def query(self, sql: str, args: Any = None):
        self.queries.append(sql)
        for prefix, response in self.responses.items():
            if sql.startswith(prefix):
                if isinstance(response, Exception):
                    raise response
                if callable(response):
                    return response(self)
                return list(response)
        raise pymysql.err.ProgrammingError(1064, f"unexpected query: {sql}")

    def block_on(self, prefix: str, seconds: float = 10.0) -> None:
        def hang(session):
            session.aborted.wait(seconds)
            raise pymysql.err.OperationalError(2013, "Lost connection to MySQL server during query")
        self.responses[prefix] = hang

    def abort(self) -> None:
        self.aborted.set()

    def close(self) -> None:
        self.closed = True


@dataclass
class PipelineHarness:
    """A pipeline wired to fakes, plus handles on those fakes."""

    pipeline: CollectorPipeline
    publisher: Mock
    liveness_publisher: Mock
    liveness: LivenessReporter
    sessions: Dict[str, Any]
    settings: MonitorSettings


@pytest.fixture
def logger():
    """Create logger for tests."""
    return setup_logger("test")


@pytest.fixture
def settings():
    """Fast settings for tests."""
    return MonitorSettings(interval=5, deadline=2.0, workers=4, abort_grace=2.0)


@pytest.fixture
def make_target() -> Callable[..., TargetConfig]:
    """Factory for TargetConfig with sensible defaults."""
    def _make(host: str = "db1.example.com", port: int = 3306, **kwargs) -> TargetConfig:
        return TargetConfig(
            database=DatabaseConfig(host=host, port=port, user="monitor", password="secret"),
            **kwargs
        )
    return _make


@pytest.fixture
def make_pipeline(logger, settings):
    """
    Build a pipeline whose sessions come from a dict keyed by host:port.

    A value that is an exception is raised by the session factory instead;
    a callable is invoked to produce a fresh session per connection.
    """
    def _make(sessions: Dict[str, Any], pipeline_settings: Optional[MonitorSettings] = None) -> PipelineHarness:
        active = pipeline_settings or settings
        publisher = Mock(spec=FalconPublisher)
        publisher.push.return_value = '{"msg": "success"}'
        liveness_publisher = Mock(spec=FalconPublisher)
        liveness_publisher.push.return_value = "ok"
        liveness = LivenessReporter(liveness_publisher, active.interval, logger)

        def session_factory(db_config: DatabaseConfig, factory_logger, io_timeout=None):
            session = sessions[f"{db_config.host}:{db_config.port}"]
            if isinstance(session, Exception):
                raise session
            if callable(session):
                return session()
            return session

        pipeline = CollectorPipeline(
            settings=active,
            collector=MySQLCollector(logger),
            assembler=MetricAssembler(logger),
            publisher=publisher,
            liveness=liveness,
            snapshot=ProcesslistSnapshot(logger),
            logger=logger,
            session_factory=session_factory,
        )
        return PipelineHarness(pipeline, publisher, liveness_publisher, liveness, sessions, active)

    return _make


@pytest.fixture
def bad_credentials():
    """Connection error as raised by MySQLSession.open on auth failure."""
    return TargetConnectionError("Cannot connect to db3.example.com:3306: (1045, \"Access denied for user 'monitor'\")")
