"""Audit scheduler - drives one task from pending to a terminal state.

A task's files are analyzed by a bounded pool of asyncio workers. All
workers share one DispatchGate, so the aggregate request rate against the
analyzer stays below one call per `inter_dispatch_gap_ms`. Counters live in
memory and are flushed to the task store in batches; the terminal write is
always a separate, unbatched flush.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Optional, Sequence
from uuid import UUID

from auditflow.config import settings
from auditflow.engine.cancellation import CancellationRegistry, get_cancellation_registry
from auditflow.engine.classifier import FailureClassification, classify_analyzer_failure
from auditflow.engine.errors import (
    AnalyzerUnavailable,
    AuditFlowError,
    InvalidScanConfiguration,
)
from auditflow.engine.gate import DispatchGate
from auditflow.engine.scoring import QualityAggregate
from auditflow.models import (
    AuditTask,
    FailureKind,
    IssueCreate,
    SourceFile,
    TaskStatus,
    TaskUpdate,
)
from auditflow.observability.metrics import metrics
from auditflow.store import TaskStore
from auditflow.utils.time import utc_now

if TYPE_CHECKING:
    from auditflow.analyzers.base import Analyzer

logger = logging.getLogger("auditflow.scheduler")


@dataclass
class SchedulerConfig:
    """Concurrency and failure policy for one audit run."""

    max_concurrency: int = 2
    inter_dispatch_gap_ms: int = 500
    max_files: int = 40
    max_file_size_bytes: int = 200 * 1024
    max_file_attempts: int = 3

    # Progress reconciliation cadence
    flush_every_files: int = 5
    flush_interval_seconds: float = 2.0

    # Provider rate-limit backoff, applied to the whole pool
    rate_limit_backoff_ms: int = 10_000
    rate_limit_backoff_step_ms: int = 5_000
    rate_limit_backoff_max_ms: int = 60_000

    # Analyzer reachability guards
    max_consecutive_failures: int = 5
    max_failure_ratio: float = 0.5
    failure_ratio_min_files: int = 10

    @classmethod
    def from_settings(cls, **overrides) -> "SchedulerConfig":
        """Build a config from application settings; keyword overrides win."""
        values = {f.name: getattr(settings, f.name) for f in fields(cls)}
        values.update(overrides)
        return cls(**values)

    def validate(self) -> None:
        """Reject configurations the scheduler cannot run with."""
        if self.max_concurrency < 1:
            raise InvalidScanConfiguration(f"max_concurrency must be >= 1, got {self.max_concurrency}")
        if self.inter_dispatch_gap_ms < 0:
            raise InvalidScanConfiguration(
                f"inter_dispatch_gap_ms must be >= 0, got {self.inter_dispatch_gap_ms}"
            )
        if self.max_files < 1:
            raise InvalidScanConfiguration(f"max_files must be >= 1, got {self.max_files}")
        if self.max_file_attempts < 1:
            raise InvalidScanConfiguration(
                f"max_file_attempts must be >= 1, got {self.max_file_attempts}"
            )
        if self.flush_every_files < 1:
            raise InvalidScanConfiguration(
                f"flush_every_files must be >= 1, got {self.flush_every_files}"
            )


@dataclass
class _AuditRun:
    """In-memory state of one running audit. Mutated only from the event loop."""

    task_id: UUID
    files: list[SourceFile]
    gate: DispatchGate
    next_index: int = 0

    scanned_files: int = 0
    total_lines: int = 0
    failed_files: int = 0
    exhausted_files: int = 0
    consecutive_exhausted: int = 0
    quality: QualityAggregate = field(default_factory=QualityAggregate)

    pending_issues: list[IssueCreate] = field(default_factory=list)
    persisted_issues: int = 0
    files_since_flush: int = 0
    last_flush_at: float = field(default_factory=time.monotonic)
    flush_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    cancel_observed: bool = False
    fatal: Optional[AuditFlowError] = None

    def has_remaining(self) -> bool:
        return self.next_index < len(self.files)

    def claim_next(self) -> Optional[SourceFile]:
        if not self.has_remaining():
            return None
        source = self.files[self.next_index]
        self.next_index += 1
        return source


class AuditScheduler:
    """
    Runs audit tasks against an analyzer and a task store.

    One scheduler may run many tasks concurrently; each run gets its own
    worker pool and gate. The only state shared between runs is the
    cancellation registry and the task store.
    """

    def __init__(
        self,
        store: TaskStore,
        analyzer: "Analyzer",
        registry: Optional[CancellationRegistry] = None,
        config: Optional[SchedulerConfig] = None,
    ):
        self.store = store
        self.analyzer = analyzer
        self.registry = registry or get_cancellation_registry()
        self.config = config or SchedulerConfig.from_settings()
        self._active: set[UUID] = set()

    def is_active(self, task_id: UUID) -> bool:
        return task_id in self._active

    async def run(
        self,
        task_id: UUID,
        files: Sequence[SourceFile],
        config: Optional[SchedulerConfig] = None,
    ) -> Optional[AuditTask]:
        """
        Drive a task to a terminal state.

        Returns the terminal task record, or None if the terminal state could
        not be persisted. Calling run() for a terminal task, or for a task
        this scheduler is already running, is a no-op that returns the
        current record.

        Raises:
            TaskNotFound: if the task does not exist
        """
        config = config or self.config
        task = await self.store.get_task(task_id)

        if task.is_terminal():
            logger.info(f"Task {task_id} already {task.status.value}, nothing to run")
            self.registry.clear(task_id)
            return task
        if task_id in self._active:
            logger.info(f"Task {task_id} is already running in this process")
            return task

        self._active.add(task_id)
        metrics.add_gauge("audit.tasks.active", 1)
        try:
            if task.status == TaskStatus.RUNNING:
                # Running but not owned by us: the process that owned it is gone.
                return await self._write_terminal_only(
                    task_id, TaskStatus.FAILED, "Audit interrupted before completion"
                )

            try:
                config.validate()
                if not files:
                    raise InvalidScanConfiguration("No files to analyze")
            except InvalidScanConfiguration as e:
                logger.warning(f"Task {task_id} rejected: {e.message}")
                return await self._write_terminal_only(task_id, TaskStatus.FAILED, e.message)

            if self.registry.is_cancelled(task_id):
                logger.info(f"Task {task_id} cancelled before start")
                return await self._write_terminal_only(task_id, TaskStatus.CANCELLED, None)

            return await self._execute(task_id, list(files), config)
        finally:
            self._active.discard(task_id)
            self.registry.clear(task_id)
            metrics.add_gauge("audit.tasks.active", -1)

    async def _execute(
        self, task_id: UUID, files: list[SourceFile], config: SchedulerConfig
    ) -> Optional[AuditTask]:
        selected = files[: config.max_files]
        if len(selected) < len(files):
            logger.info(
                f"Task {task_id}: {len(files)} files, analyzing first {len(selected)} (max_files cap)"
            )

        run = _AuditRun(
            task_id=task_id,
            files=selected,
            gate=DispatchGate(config.inter_dispatch_gap_ms / 1000.0),
        )

        try:
            await self.store.update_task(
                task_id,
                TaskUpdate(
                    status=TaskStatus.RUNNING,
                    started_at=utc_now(),
                    total_files=len(files),
                    planned_files=len(selected),
                ),
            )
        except Exception as e:
            logger.error(f"Task {task_id}: could not enter running: {e}", exc_info=True)
            return await self._write_terminal_only(
                task_id, TaskStatus.FAILED, f"Could not start audit: {e}"
            )

        logger.info(
            f"Task {task_id} running: {len(selected)} files, "
            f"concurrency={config.max_concurrency}, gap={config.inter_dispatch_gap_ms}ms"
        )

        pool_size = min(config.max_concurrency, len(selected))
        try:
            await asyncio.gather(*(self._worker(run, config) for _ in range(pool_size)))
        except asyncio.CancelledError:
            logger.warning(f"Task {task_id} interrupted during analysis")
            await self._write_terminal_only(
                task_id, TaskStatus.FAILED, "Audit interrupted by shutdown"
            )
            raise

        return await self._finish(run)

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    def _should_stop(self, run: _AuditRun) -> bool:
        if run.fatal is not None:
            return True
        if run.cancel_observed:
            return True
        if self.registry.is_cancelled(run.task_id):
            logger.info(f"Task {run.task_id}: cancellation observed, draining pool")
            run.cancel_observed = True
            return True
        return False

    async def _worker(self, run: _AuditRun, config: SchedulerConfig) -> None:
        while True:
            # Nothing left to dispatch: a late cancel request changes nothing.
            if not run.has_remaining():
                return
            if self._should_stop(run):
                return
            source = run.claim_next()
            if source is None:
                return

            try:
                await self._process_file(run, source, config)
            except Exception as e:
                logger.error(f"Task {run.task_id}: unexpected error on {source.path}: {e}", exc_info=True)
                run.fatal = AuditFlowError(f"Unexpected scheduler error: {e}")
                return

            await self._maybe_flush(run, config)

    async def _process_file(self, run: _AuditRun, source: SourceFile, config: SchedulerConfig) -> None:
        if source.size_bytes > config.max_file_size_bytes:
            logger.warning(
                f"Task {run.task_id}: skipping {source.path} "
                f"({source.size_bytes} bytes > {config.max_file_size_bytes})"
            )
            self._record_failure(
                run,
                source,
                FailureClassification(kind=FailureKind.PERMANENT, reason_code="file_too_large"),
                config,
                analyzer_answered=False,
            )
            return

        if not source.is_loaded:
            try:
                await asyncio.to_thread(source.load)
            except (OSError, ValueError) as e:
                logger.warning(f"Task {run.task_id}: skipping unreadable {source.path}: {e}")
                self._record_failure(
                    run,
                    source,
                    FailureClassification(kind=FailureKind.PERMANENT, reason_code="unreadable"),
                    config,
                    analyzer_answered=False,
                )
                return

        attempt = 0
        while True:
            attempt += 1
            await run.gate.wait_turn()
            if run.fatal is not None:
                return
            # Cancellation only suppresses a file's first dispatch; once the
            # analyzer has seen a file, its retries run to success or exhaustion.
            if attempt == 1 and self._should_stop(run):
                return

            metrics.inc_counter("audit.dispatch.count")
            started = time.perf_counter()
            try:
                result = await self.analyzer.analyze(source.path, source.language, source.load())
            except Exception as e:
                metrics.observe("audit.analyzer.duration_ms", (time.perf_counter() - started) * 1000.0)
                classification = classify_analyzer_failure(e)

                if classification.is_transient and attempt < config.max_file_attempts:
                    metrics.inc_counter("audit.dispatch.retries")
                    logger.warning(
                        f"Task {run.task_id}: transient failure on {source.path} "
                        f"({classification.reason_code}), attempt {attempt}/{config.max_file_attempts}: {e}"
                    )
                    if classification.is_rate_limit:
                        run.gate.defer(self._rate_limit_backoff(run, classification, config))
                    continue

                logger.warning(
                    f"Task {run.task_id}: skipping {source.path} "
                    f"({classification.kind.value}/{classification.reason_code}) "
                    f"after {attempt} attempt(s): {e}"
                )
                self._record_failure(
                    run,
                    source,
                    classification,
                    config,
                    analyzer_answered=not classification.is_transient,
                )
                return

            metrics.observe("audit.analyzer.duration_ms", (time.perf_counter() - started) * 1000.0)
            self._record_success(run, source, result)
            return

    @staticmethod
    def _rate_limit_backoff(
        run: _AuditRun, classification: FailureClassification, config: SchedulerConfig
    ) -> float:
        if classification.retry_after_seconds is not None:
            return min(classification.retry_after_seconds, config.rate_limit_backoff_max_ms / 1000.0)
        backoff_ms = min(
            config.rate_limit_backoff_max_ms,
            config.rate_limit_backoff_ms + run.failed_files * config.rate_limit_backoff_step_ms,
        )
        return backoff_ms / 1000.0

    def _record_success(self, run: _AuditRun, source: SourceFile, result) -> None:
        lines = source.line_count
        run.pending_issues.extend(IssueCreate.from_finding(source.path, f) for f in result.issues)
        run.scanned_files += 1
        run.total_lines += lines
        run.quality.add(result.quality_score, lines)
        run.consecutive_exhausted = 0
        run.files_since_flush += 1
        metrics.inc_counter("audit.files.analyzed")
        metrics.inc_counter("audit.issues.found", len(result.issues))

    def _record_failure(
        self,
        run: _AuditRun,
        source: SourceFile,
        classification: FailureClassification,
        config: SchedulerConfig,
        analyzer_answered: bool,
    ) -> None:
        # Skipped files still count as scanned so progress stays monotonic.
        run.scanned_files += 1
        run.failed_files += 1
        run.files_since_flush += 1
        metrics.inc_counter("audit.files.failed")

        if classification.is_transient:
            run.exhausted_files += 1
            run.consecutive_exhausted += 1
        elif analyzer_answered:
            run.consecutive_exhausted = 0

        if run.fatal is not None:
            return

        if run.consecutive_exhausted >= config.max_consecutive_failures:
            run.fatal = AnalyzerUnavailable(
                f"Analyzer unreachable: {run.consecutive_exhausted} consecutive files failed "
                f"after retries (last: {classification.reason_code})"
            )
        elif (
            run.scanned_files >= config.failure_ratio_min_files
            and run.exhausted_files / run.scanned_files > config.max_failure_ratio
        ):
            run.fatal = AnalyzerUnavailable(
                f"Analyzer unreliable: {run.exhausted_files}/{run.scanned_files} files failed after retries"
            )

        if run.fatal is not None:
            logger.error(f"Task {run.task_id}: {run.fatal.message}; stopping new dispatches")

    # ------------------------------------------------------------------
    # Reconciliation with the task store
    # ------------------------------------------------------------------

    async def _maybe_flush(self, run: _AuditRun, config: SchedulerConfig) -> None:
        due = (
            run.files_since_flush >= config.flush_every_files
            or time.monotonic() - run.last_flush_at >= config.flush_interval_seconds
        )
        if not due or run.files_since_flush == 0 or run.flush_lock.locked():
            return
        try:
            await self._flush(run)
        except Exception as e:
            # Retried on the next cycle; in-memory state is intact.
            metrics.inc_counter("audit.flush.failures")
            logger.warning(f"Task {run.task_id}: progress flush failed, will retry: {e}")

    async def _flush(self, run: _AuditRun, **final_fields) -> AuditTask:
        """Append buffered issues, then write counters that match them."""
        async with run.flush_lock:
            issues = run.pending_issues
            run.pending_issues = []
            scanned_files = run.scanned_files
            total_lines = run.total_lines
            flushed_files = run.files_since_flush

            if issues:
                try:
                    await self.store.append_issues(run.task_id, issues)
                except BaseException:
                    run.pending_issues[:0] = issues
                    raise
                run.persisted_issues += len(issues)

            task = await self.store.update_task(
                run.task_id,
                TaskUpdate(
                    scanned_files=scanned_files,
                    total_lines=total_lines,
                    issues_count=run.persisted_issues,
                    **final_fields,
                ),
            )
            run.files_since_flush = max(0, run.files_since_flush - flushed_files)
            run.last_flush_at = time.monotonic()
            metrics.inc_counter("audit.flush.count")
            return task

    async def _finish(self, run: _AuditRun) -> Optional[AuditTask]:
        if run.fatal is not None:
            status = TaskStatus.FAILED
            error_message = run.fatal.message
        elif run.cancel_observed:
            status = TaskStatus.CANCELLED
            error_message = None
        else:
            status = TaskStatus.COMPLETED
            error_message = None

        final_fields = {
            "status": status,
            "quality_score": run.quality.score,
            "completed_at": utc_now(),
        }
        if error_message:
            final_fields["error_message"] = error_message

        try:
            task = await self._flush(run, **final_fields)
        except Exception as e:
            logger.error(f"Task {run.task_id}: final flush failed: {e}", exc_info=True)
            return await self._write_terminal_only(
                run.task_id, TaskStatus.FAILED, f"Final flush failed: {e}"
            )

        logger.info(
            f"Task {run.task_id} {status.value}: {run.scanned_files}/{len(run.files)} files, "
            f"{run.persisted_issues} issues, {run.failed_files} skipped, "
            f"quality {run.quality.score}"
        )
        metrics.inc_counter(f"audit.tasks.{status.value}")
        return task

    async def _write_terminal_only(
        self, task_id: UUID, status: TaskStatus, error_message: Optional[str]
    ) -> Optional[AuditTask]:
        """Best-effort terminal write that touches no counters."""
        update = TaskUpdate(status=status, completed_at=utc_now())
        if error_message:
            update = TaskUpdate(status=status, completed_at=utc_now(), error_message=error_message)
        try:
            task = await self.store.update_task(task_id, update)
        except Exception as e:
            logger.error(f"Task {task_id}: could not persist terminal status {status.value}: {e}")
            return None
        metrics.inc_counter(f"audit.tasks.{status.value}")
        return task
