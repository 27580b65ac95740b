"""AuditFlow engine - task lifecycle entry points."""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional, Sequence
from uuid import UUID

from auditflow.engine.cancellation import CancellationRegistry, get_cancellation_registry
from auditflow.engine.progress import ProgressWatcher
from auditflow.engine.scheduler import AuditScheduler, SchedulerConfig
from auditflow.models import (
    AuditIssue,
    AuditTask,
    ProgressSnapshot,
    ScanConfig,
    SourceFile,
    TaskKind,
)
from auditflow.store import TaskStore

if TYPE_CHECKING:
    from auditflow.analyzers.base import Analyzer

logger = logging.getLogger("auditflow.engine")


class AuditEngine:
    """
    Facade over the task store, scheduler and cancellation registry.

    The cancel path only records intent in the registry; the scheduler loop
    is the single writer of terminal status.
    """

    def __init__(
        self,
        store: TaskStore,
        analyzer: "Analyzer",
        registry: Optional[CancellationRegistry] = None,
        config: Optional[SchedulerConfig] = None,
    ):
        self.store = store
        self.registry = registry or get_cancellation_registry()
        self.scheduler = AuditScheduler(store, analyzer, registry=self.registry, config=config)
        self._background: dict[UUID, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Creation and execution
    # ------------------------------------------------------------------

    async def create_task(
        self,
        project_id: str,
        kind: TaskKind = TaskKind.REPOSITORY,
        scan_config: Optional[ScanConfig] = None,
        created_by: Optional[str] = None,
    ) -> AuditTask:
        """Create a pending audit task."""
        task = await self.store.create_task(
            project_id=project_id,
            kind=kind,
            scan_config=scan_config,
            created_by=created_by,
        )
        logger.info(f"Created {kind.value} task {task.task_id} for project {project_id}")
        return task

    async def run(
        self,
        task_id: UUID,
        files: Sequence[SourceFile],
        config: Optional[SchedulerConfig] = None,
    ) -> Optional[AuditTask]:
        """Run a task inline until it reaches a terminal state."""
        return await self.scheduler.run(task_id, files, config=config)

    def start(
        self,
        task_id: UUID,
        files: Sequence[SourceFile],
        config: Optional[SchedulerConfig] = None,
    ) -> asyncio.Task:
        """Run a task in the background. Starting an already-started task returns its handle."""
        existing = self._background.get(task_id)
        if existing is not None and not existing.done():
            return existing

        background = asyncio.create_task(
            self.scheduler.run(task_id, list(files), config=config),
            name=f"audit-{task_id}",
        )
        self._background[task_id] = background
        background.add_done_callback(lambda t, tid=task_id: self._on_background_done(tid, t))
        return background

    def _on_background_done(self, task_id: UUID, background: asyncio.Task) -> None:
        if self._background.get(task_id) is background:
            del self._background[task_id]
        if background.cancelled():
            return
        error = background.exception()
        if error is not None:
            logger.error(f"Background audit {task_id} crashed: {error}", exc_info=error)

    async def analyze_snippet(
        self,
        project_id: str,
        code: str,
        language: str,
        created_by: Optional[str] = None,
    ) -> Optional[AuditTask]:
        """Create and run an instant task over a single in-memory snippet."""
        from auditflow.sources import extension_for_language

        task = await self.create_task(project_id, kind=TaskKind.INSTANT, created_by=created_by)
        snippet = SourceFile(
            path=f"snippet{extension_for_language(language)}",
            language=language.strip().lower() or "text",
            content=code,
        )
        return await self.run(task.task_id, [snippet])

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def request_cancel(self, task_id: UUID) -> bool:
        """
        Record cancellation intent.

        Returns False (a no-op) when the task is already terminal.

        Raises:
            TaskNotFound: if the task does not exist
        """
        task = await self.store.get_task(task_id)
        if task.is_terminal():
            logger.info(f"Cancel for task {task_id} ignored: already {task.status.value}")
            return False
        self.registry.request_cancel(task_id)

        # A run that is no longer active may have finished after the read
        # above, clearing the registry before this intent was recorded.
        if not self.scheduler.is_active(task_id):
            task = await self.store.get_task(task_id)
            if task.is_terminal():
                self.registry.clear(task_id)
                logger.info(f"Cancel for task {task_id} ignored: finished as {task.status.value}")
                return False

        logger.info(f"Cancellation requested for task {task_id}")
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_task(self, task_id: UUID) -> AuditTask:
        return await self.store.get_task(task_id)

    async def list_issues(self, task_id: UUID) -> list[AuditIssue]:
        return await self.store.list_issues(task_id)

    async def get_progress(self, task_id: UUID) -> ProgressSnapshot:
        return ProgressSnapshot.from_task(await self.store.get_task(task_id))

    def watch(self, task_id: UUID, poll_interval_seconds: Optional[float] = None) -> ProgressWatcher:
        return ProgressWatcher(self.store, task_id, poll_interval_seconds=poll_interval_seconds)

    def is_running(self, task_id: UUID) -> bool:
        return self.scheduler.is_active(task_id)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self, grace_seconds: float = 30.0) -> None:
        """Ask running audits to stop, wait for them to drain, then cancel stragglers."""
        running = [t for t in self._background.values() if not t.done()]
        if not running:
            return

        logger.info(f"Stopping {len(running)} running audit(s)")
        for task_id in list(self._background):
            self.registry.request_cancel(task_id)

        done, pending = await asyncio.wait(running, timeout=grace_seconds)
        for straggler in pending:
            logger.warning(f"Audit {straggler.get_name()} did not stop gracefully, cancelling")
            straggler.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
