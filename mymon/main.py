"""Main application entry point for the MySQL monitor."""

import argparse
import asyncio
import signal
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import List, Optional

from pydantic import ValidationError

from .collectors.mysql_collector import MySQLCollector
from .config.models import MonitorSettings
from .config.settings import Settings
from .pipeline import CollectorPipeline
from .services.assembler import MetricAssembler
from .services.diagnostics import DiagnosticsServer
from .services.enumerator import TargetEnumerator
from .services.liveness import LivenessReporter
from .services.publisher import FalconPublisher
from .services.scheduler import MonitorScheduler
from .services.snapshot import ProcesslistSnapshot
from .services.worker_pool import WorkerPool
from .utils.errors import ConfigSourceError
from .utils.logger import setup_logger


def get_version() -> str:
    try:
        return version("mymon")
    except PackageNotFoundError:
        return "unknown"


class MonitorApp:
    """
    Main monitoring application.

    Wires the enumerator, worker pool, pipeline and scheduler together and
    handles graceful shutdown.
    """

    def __init__(
        self,
        settings: MonitorSettings,
        config_file: Optional[str] = None,
        config_dir: Optional[str] = None,
        log_level: str = "INFO",
        log_file: Optional[str] = None,
        diag_addr: Optional[str] = None
    ):
        """
        Initialize monitoring application.

        Args:
            settings: Process settings
            config_file: Single target configuration file
            config_dir: Directory of target configuration files
            log_level: Logging level
            log_file: Optional log file path
            diag_addr: host:port for the diagnostics endpoint, None to disable

        Raises:
            ConfigSourceError: If the configuration source does not exist
        """
        self.settings = settings
        self.logger = setup_logger("mymon", log_level, log_file or None)
        self._stop: Optional[asyncio.Event] = None

        self.logger.info("=" * 60)
        self.logger.info(f"MySQL Monitor {get_version()}")
        self.logger.info("=" * 60)

        self.enumerator = TargetEnumerator(self.logger, config_file=config_file, config_dir=config_dir)
        self.enumerator.check_source()
        self.logger.info(f"Loading targets from {self.enumerator.source}")

        self.publisher = FalconPublisher(settings.agent_url, settings.push_timeout, self.logger)
        self.liveness = LivenessReporter(self.publisher, settings.interval, self.logger)
        self.pipeline = CollectorPipeline(
            settings=settings,
            collector=MySQLCollector(self.logger),
            assembler=MetricAssembler(self.logger),
            publisher=self.publisher,
            liveness=self.liveness,
            snapshot=ProcesslistSnapshot(self.logger),
            logger=self.logger,
        )
        self.pool: Optional[WorkerPool] = None
        self.scheduler: Optional[MonitorScheduler] = None
        self.diagnostics = DiagnosticsServer(diag_addr, self.liveness, self.logger) if diag_addr else None

    def _build_scheduler(self) -> MonitorScheduler:
        # The pool's semaphore belongs to the running loop, so build it inside
        self.pool = WorkerPool(
            self.settings.workers,
            self.logger,
            queue_size=self.settings.effective_queue_size,
            overflow=self.settings.overflow,
        )
        if self.diagnostics is not None:
            self.diagnostics.attach_pool(self.pool)
        self.scheduler = MonitorScheduler(
            self.settings, self.enumerator, self.pool, self.pipeline, self.logger
        )
        return self.scheduler

    async def run_once(self) -> bool:
        """
        Run one tick and wait for it.

        Returns:
            bool: True if every target collected successfully
        """
        scheduler = self._build_scheduler()
        try:
            results = await scheduler.run_once()
        finally:
            self._close()

        failed = [r.target_key for r in results if not r.success]
        self.logger.info(
            f"Run complete: {len(results) - len(failed)}/{len(results)} target(s) up",
            extra={"failed": failed}
        )
        return not failed

    async def serve(self) -> None:
        """Run the scheduler until SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, self._signal_handler, signum)

        scheduler = self._build_scheduler()
        if self.diagnostics is not None:
            self.diagnostics.start()
        scheduler.start()
        self.logger.info("Scheduler running. Press Ctrl+C to exit.")

        try:
            await self._stop.wait()
        finally:
            scheduler.shutdown()
            self._close()

    def _signal_handler(self, signum: int) -> None:
        """
        Handle shutdown signals.

        Args:
            signum: Signal number
        """
        signal_name = signal.Signals(signum).name
        self.logger.info(f"Received {signal_name}, initiating graceful shutdown...")
        if self._stop is not None:
            self._stop.set()

    def _close(self) -> None:
        if self.diagnostics is not None:
            self.diagnostics.stop()
        if self.pool is not None:
            self.pool.shutdown(wait=False)
        self.publisher.close()


def build_parser() -> argparse.ArgumentParser:
    settings = Settings()
    parser = argparse.ArgumentParser(
        prog='mymon',
        description='MySQL monitor pushing status metrics to an Open-Falcon compatible agent',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Poll every target file in ./etc every 60 seconds
  mymon -d etc

  # One target, one pass, then exit
  mymon -c etc/db1.yaml --run-once

  # 8 workers, 30 second ticks, 10 second deadline per target
  mymon -d /etc/mymon -t 8 --interval 30 --deadline 10
        """
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument('-c', '--config', help='Single target configuration file')
    source.add_argument(
        '-d', '--config-dir',
        default='etc',
        help='Directory of target configuration files (default: etc)'
    )

    parser.add_argument(
        '-t', '--workers',
        type=int,
        default=None,
        help='Concurrent pipelines (default: CPU count)'
    )
    parser.add_argument(
        '--interval',
        type=int,
        default=settings.INTERVAL,
        help='Tick interval in seconds (default: 60 or MYMON_INTERVAL)'
    )
    parser.add_argument(
        '--deadline',
        type=float,
        default=settings.DEADLINE,
        help='Per-target deadline in seconds (default: 30 or MYMON_DEADLINE)'
    )
    parser.add_argument('--queue-size', type=int, default=0, help='Waiting jobs before dropping (default: workers)')
    parser.add_argument('--overflow', choices=['drop', 'queue'], default='drop', help='Pool overflow policy')
    parser.add_argument('--agent-url', default=settings.AGENT_URL, help='Agent push URL (or MYMON_AGENT_URL)')
    parser.add_argument(
        '--log-level',
        default=settings.LOG_LEVEL,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: INFO or MYMON_LOG_LEVEL env var)'
    )
    parser.add_argument('--log-file', default=settings.LOG_FILE, help='Also write logs to this file')
    parser.add_argument('--run-once', action='store_true', help='Run one tick and exit (no scheduler)')
    parser.add_argument('--diag', action='store_true', help='Serve pool and liveness state over HTTP')
    parser.add_argument(
        '--diag-addr',
        default='localhost:6060',
        help='Diagnostics listen address (default: localhost:6060)'
    )
    parser.add_argument('-v', '--version', action='version', version=f'%(prog)s {get_version()}')
    return parser


def main(argv: Optional[List[str]] = None):
    """
    CLI entry point.

    Parses command-line arguments and starts the monitor.
    """
    args = build_parser().parse_args(argv)

    try:
        settings_kwargs = {
            "interval": args.interval,
            "deadline": args.deadline,
            "queue_size": args.queue_size,
            "overflow": args.overflow,
            "agent_url": args.agent_url,
        }
        if args.workers is not None:
            settings_kwargs["workers"] = args.workers
        settings = MonitorSettings(**settings_kwargs)
    except ValidationError as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        app = MonitorApp(
            settings,
            config_file=args.config,
            config_dir=None if args.config else args.config_dir,
            log_level=args.log_level,
            log_file=args.log_file,
            diag_addr=args.diag_addr if args.diag else None
        )
    except ValueError as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        sys.exit(2)
    except ConfigSourceError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.run_once:
        ok = asyncio.run(app.run_once())
        sys.exit(0 if ok else 1)

    asyncio.run(app.serve())


if __name__ == '__main__':
    main()
