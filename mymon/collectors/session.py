"""Exclusively owned MySQL connection used by one pipeline run."""

import logging
import socket
import threading
from typing import Any, Dict, List, Optional

import pymysql
import pymysql.cursors

from ..config.models import DatabaseConfig
from ..utils.errors import TargetConnectionError

# Server error raised by SHOW BINARY LOGS when log_bin is OFF
ER_NO_BINARY_LOGGING = 1381


class MySQLSession:
    """
    One pymysql connection, owned by a single pipeline invocation.

    Queries run on the pipeline's worker thread. abort() may be called
    from any other thread to break a blocked query.
    """

    def __init__(self, conn: Any, config: DatabaseConfig, logger: logging.Logger):
        self._conn = conn
        self._lock = threading.Lock()
        self._closed = False
        self.config = config
        self.logger = logger

    @classmethod
    def open(
        cls,
        config: DatabaseConfig,
        logger: logging.Logger,
        io_timeout: Optional[float] = None
    ) -> "MySQLSession":
        """
        Open a connection with dict cursors.

        Args:
            config: Database connection parameters
            logger: Logger instance
            io_timeout: Socket read/write timeout in seconds

        Returns:
            MySQLSession: Open session

        Raises:
            TargetConnectionError: If the connection or authentication fails
        """
        logger.debug(f"Connecting to {config.host}:{config.port} as {config.user}")

        # A connect in progress cannot be aborted, so it must not outlive the deadline
        connect_timeout = config.connect_timeout
        if io_timeout is not None:
            connect_timeout = min(connect_timeout, io_timeout)

        try:
            conn = pymysql.connect(
                host=config.host,
                port=config.port,
                user=config.user,
                password=config.password,
                connect_timeout=connect_timeout,
                read_timeout=io_timeout,
                write_timeout=io_timeout,
                autocommit=True,
                charset="utf8mb4",
                cursorclass=pymysql.cursors.DictCursor,
            )
        except pymysql.MySQLError as e:
            raise TargetConnectionError(
                f"Cannot connect to {config.host}:{config.port}: {e}"
            ) from e

        return cls(conn, config, logger)

    def query(self, sql: str, args: Any = None) -> List[Dict[str, Any]]:
        """
        Run one statement and return all rows.

        Args:
            sql: Statement to execute
            args: Optional query parameters

        Returns:
            List of row dicts keyed by column name
        """
        with self._conn.cursor() as cursor:
            cursor.execute(sql, args)
            return list(cursor.fetchall())

    def abort(self) -> None:
        """
        Break any in-flight call by shutting the socket down.

        Closing the pymysql connection object alone does not wake a thread
        blocked in recv(); shutdown() does, and the blocked call then fails
        with a lost-connection error.
        """
        with self._lock:
            if self._closed:
                return
            sock = getattr(self._conn, "_sock", None)
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            self.logger.debug(f"Socket shutdown for {self.config.host}:{self.config.port}: {e}")

    def close(self) -> None:
        """Release the connection; safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._conn.close()
        except pymysql.err.Error:
            # Already closed, or the socket was shut down by abort()
            self._force_close()

    def _force_close(self) -> None:
        force_close = getattr(self._conn, "_force_close", None)
        if force_close is not None:
            force_close()

    @property
    def closed(self) -> bool:
        return self._closed
