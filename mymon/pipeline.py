"""Per-target collection pipeline raced against a hard deadline."""

import asyncio
import logging
import os
import threading
import time
from concurrent.futures import Executor
from typing import Callable, List, Optional

from .collectors.engine import get_engine_diagnostics
from .collectors.mysql_collector import MySQLCollector
from .collectors.session import MySQLSession
from .config.models import MonitorSettings, TargetConfig
from .services.assembler import MetricAssembler, MetricContext
from .services.liveness import LivenessReporter
from .services.publisher import FalconPublisher
from .services.snapshot import ProcesslistSnapshot
from .utils.errors import (
    ConfigError,
    DiagnosticStepError,
    MonitorError,
    PipelineTimeout,
    PublishError,
    RequiredStepError,
)
from .utils.metrics import CollectionResult, MetricRecord
from .utils.status import Role


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class PipelineContext:
    """
    State of one pipeline invocation.

    Role, read-only flag and tags live here and nowhere else, so pipelines
    for different targets can run concurrently without sharing anything.
    The outcome is settled exactly once, either by the worker thread after
    the required steps or by the deadline handler.
    """

    def __init__(self, target: TargetConfig, deadline: float):
        self.target = target
        self.deadline = deadline
        self.started = time.monotonic()
        self.timestamp = int(time.time())
        self.read_only = False
        self.role = Role.READ_ONLY_UNKNOWN
        self.outcome: Optional[CollectionResult] = None
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._session: Optional[MySQLSession] = None

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def restart(self) -> None:
        """Start the clock when a worker thread actually picks the run up."""
        self.started = time.monotonic()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def attach(self, session: MySQLSession) -> None:
        """Register the session so cancel() can abort it."""
        with self._lock:
            self._session = session
            cancelled = self._cancelled.is_set()
        if cancelled:
            session.abort()

    def cancel(self) -> None:
        """Stop the worker: flag it and break any in-flight query."""
        with self._lock:
            self._cancelled.set()
            session = self._session
        if session is not None:
            session.abort()

    def checkpoint(self) -> None:
        if self._cancelled.is_set():
            raise PipelineTimeout(self.target.key, self.deadline)

    def settle(self, result: CollectionResult) -> bool:
        """
        Record the outcome if nobody has yet.

        Returns:
            bool: True if this call decided the outcome
        """
        with self._lock:
            if self.outcome is not None:
                return False
            self.outcome = result
            return True


class CollectorPipeline:
    """
    Runs the ordered collection steps for one target.

    Steps 1-8 are required and all-or-nothing; step 9 publishes; step 10
    (process list) is diagnostic only. The blocking work runs on a worker
    thread and is raced against the deadline on the event loop.
    """

    def __init__(
        self,
        settings: MonitorSettings,
        collector: MySQLCollector,
        assembler: MetricAssembler,
        publisher: FalconPublisher,
        liveness: LivenessReporter,
        snapshot: ProcesslistSnapshot,
        logger: logging.Logger,
        session_factory: Callable[..., MySQLSession] = MySQLSession.open
    ):
        """
        Initialize pipeline.

        Args:
            settings: Process settings (deadline, default step, abort grace)
            collector: MySQL status reader
            assembler: Raw value to MetricRecord converter
            publisher: Agent client
            liveness: Liveness reporter
            snapshot: Process-list snapshot writer
            logger: Logger instance
            session_factory: Opens a MySQLSession for a DatabaseConfig
        """
        self.settings = settings
        self.collector = collector
        self.assembler = assembler
        self.publisher = publisher
        self.liveness = liveness
        self.snapshot = snapshot
        self.session_factory = session_factory
        self.logger = logger.getChild(self.__class__.__name__)

    @property
    def deadline(self) -> float:
        return self.settings.deadline

    async def run(self, target: TargetConfig, executor: Optional[Executor] = None) -> CollectionResult:
        """
        Execute the pipeline for one target under the deadline.

        Args:
            target: Target to collect
            executor: Thread pool for the blocking work

        Returns:
            CollectionResult: Outcome; a PipelineTimeout error if the deadline won
        """
        ctx = PipelineContext(target, self.deadline)
        loop = asyncio.get_running_loop()
        picked_up = loop.create_future()
        future = loop.run_in_executor(executor, self._execute_on_thread, ctx, loop, picked_up)

        # The deadline covers the pipeline itself, not time spent waiting for a thread
        await picked_up
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self.deadline)
        except asyncio.TimeoutError:
            pass

        timeout = PipelineTimeout(target.key, self.deadline)
        ctx.cancel()

        result = CollectionResult(
            target_key=target.key,
            success=False,
            elapsed=ctx.elapsed,
            error=timeout,
            role=ctx.role,
            read_only=ctx.read_only,
        )
        if ctx.settle(result):
            self.logger.error(
                f"Timeout: {timeout}",
                extra={"target": target.key, "elapsed": result.elapsed, "error_type": "PipelineTimeout"}
            )
            await loop.run_in_executor(None, self.liveness.report, target, result)
        else:
            # Required steps had already finished; only the diagnostic step overran
            result = ctx.outcome
            self.logger.warning(f"Diagnostic step for {target.key} aborted at deadline")

        # Returning releases the pool slot and the in-flight key, so never
        # before the worker thread is gone
        done, _ = await asyncio.wait({future}, timeout=self.settings.abort_grace)
        if not done:
            self.logger.warning(
                f"Worker for {target.key} still running {self.settings.abort_grace:.1f}s after abort, "
                f"holding its slot until it exits",
                extra={"target": target.key}
            )
            await asyncio.wait({future})
        return result

    def _execute_on_thread(
        self,
        ctx: PipelineContext,
        loop: asyncio.AbstractEventLoop,
        picked_up: asyncio.Future
    ) -> CollectionResult:
        loop.call_soon_threadsafe(_resolve, picked_up)
        ctx.restart()
        return self.execute(ctx)

    def execute(self, ctx: PipelineContext) -> CollectionResult:
        """
        Blocking body of the pipeline. Runs on a worker thread.

        Args:
            ctx: Invocation context

        Returns:
            CollectionResult: Outcome as settled on the context
        """
        target = ctx.target
        self.logger.debug(f"MySQL monitor for {target.key} starting")

        try:
            self._prepare_dirs(target)
            session = self.session_factory(target.database, self.logger, io_timeout=self.deadline)
        except MonitorError as e:
            return self._finish_failed(ctx, e)

        ctx.attach(session)
        try:
            try:
                metrics = self._collect_required(ctx, session)
            except (RequiredStepError, PipelineTimeout) as e:
                return self._finish_failed(ctx, e)

            result = CollectionResult(
                target_key=target.key,
                success=True,
                elapsed=ctx.elapsed,
                metrics=metrics,
                role=ctx.role,
                read_only=ctx.read_only,
            )
            if not ctx.settle(result):
                return ctx.outcome

            result.published = self._publish(target, metrics)
            self.liveness.report(target, result)
            self._collect_diagnostics(ctx, session)
            return result

        finally:
            session.close()
            self.logger.info(
                f"MySQL monitor for {target.key} finished, elapsed {ctx.elapsed:.3f}s",
                extra={"target": target.key, "elapsed": ctx.elapsed}
            )

    def _collect_required(self, ctx: PipelineContext, session: MySQLSession) -> List[MetricRecord]:
        """Steps 1-8. Any failure raises and nothing gathered so far survives."""
        target = ctx.target

        ctx.read_only = self._step(ctx, "read_only", self.collector.read_only, session)
        is_slave, slave_raw = self._step(ctx, "slave_status", self.collector.slave_status, session)
        ctx.role = Role.resolve(is_slave, ctx.read_only)

        metric_ctx = self._step(ctx, "resolve_tags", self._resolve_context, ctx)

        metrics: List[MetricRecord] = []
        status_raw = self._step(ctx, "global_status", self.collector.global_status, session)
        metrics.extend(self.assembler.build(status_raw, metric_ctx))

        variables_raw = self._step(ctx, "global_variables", self.collector.global_variables, session)
        metrics.extend(self.assembler.build(variables_raw, metric_ctx))

        engine_raw = self._step(
            ctx, "engine_status", lambda: get_engine_diagnostics(target.engine).read(session)
        )
        metrics.extend(self.assembler.build(engine_raw, metric_ctx))

        metrics.extend(self._step(ctx, "merge_slave_status", self.assembler.build, slave_raw, metric_ctx))

        binlog_raw = self._step(ctx, "binary_logs", self.collector.binary_logs, session)
        metrics.extend(self.assembler.build(binlog_raw, metric_ctx))

        return metrics

    def _step(self, ctx: PipelineContext, name: str, func: Callable, *args):
        ctx.checkpoint()
        try:
            return func(*args)
        except Exception as e:
            if ctx.cancelled:
                raise PipelineTimeout(ctx.target.key, ctx.deadline) from e
            raise RequiredStepError(name, e) from e

    def _resolve_context(self, ctx: PipelineContext) -> MetricContext:
        """Step 3: identity and tags for this invocation only."""
        target = ctx.target
        tags = dict(target.tags)
        tags.update({
            "port": str(target.database.port),
            "role": ctx.role.value,
            "read_only": "1" if ctx.read_only else "0",
            "type": "mysql",
        })
        return MetricContext(
            endpoint=target.endpoint_name,
            tags=tags,
            timestamp=ctx.timestamp,
            step=target.step or self.settings.interval,
            ignore=frozenset(target.ignore_metrics),
        )

    def _publish(self, target: TargetConfig, metrics: List[MetricRecord]) -> bool:
        """Step 9. Failure is logged and never changes the result."""
        try:
            body = self.publisher.push(metrics, agent_url=target.agent_url)
        except PublishError as e:
            self.logger.error(
                f"Send response {target.key} - {e.body if e.body is not None else e}",
                extra={"target": target.key, "error_type": "PublishError"}
            )
            return False

        self.logger.info(
            f"Send response {target.key} - {body}",
            extra={"target": target.key, "metrics": len(metrics)}
        )
        return True

    def _collect_diagnostics(self, ctx: PipelineContext, session: MySQLSession) -> None:
        """Step 10. Best effort: failures are logged only."""
        target = ctx.target
        try:
            ctx.checkpoint()
            rows = self.collector.processlist(session)
            self.logger.debug(f"{target.key} has {len(rows)} active session(s)")
            self.snapshot.write(target, rows)
        except Exception as e:
            error = DiagnosticStepError(f"processlist for {target.key}: {e}")
            self.logger.warning(
                str(error),
                extra={"target": target.key, "error_type": type(e).__name__}
            )

    def _finish_failed(self, ctx: PipelineContext, error: MonitorError) -> CollectionResult:
        target = ctx.target
        result = CollectionResult(
            target_key=target.key,
            success=False,
            elapsed=ctx.elapsed,
            error=error,
            role=ctx.role,
            read_only=ctx.read_only,
        )
        if not ctx.settle(result):
            return ctx.outcome

        self.logger.error(
            f"Error: {error}",
            extra={"target": target.key, "error_type": type(error).__name__}
        )
        # Nothing was attempted against the server for a bad config
        if not isinstance(error, ConfigError):
            self.liveness.report(target, result)
        return result

    @staticmethod
    def _prepare_dirs(target: TargetConfig) -> None:
        for directory in (target.log_dir, target.snapshot_dir):
            if not directory:
                continue
            try:
                os.makedirs(directory, mode=0o755, exist_ok=True)
            except OSError as e:
                raise ConfigError(target.source or target.key, f"cannot create {directory}: {e}") from e
