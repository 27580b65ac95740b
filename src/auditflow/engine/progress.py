"""Observer-side progress polling with change suppression."""

import asyncio
import logging
from typing import AsyncIterator, Optional
from uuid import UUID

from auditflow.config import settings
from auditflow.engine.errors import PersistenceError
from auditflow.models import ProgressSnapshot
from auditflow.store import TaskStore

logger = logging.getLogger("auditflow.progress")


class ProgressWatcher:
    """
    Polls the task store for one task and emits a snapshot only when it changed.

    This is a read-only side loop: it never coordinates with the scheduler
    and may skip intermediate states. Iteration ends after the first terminal
    snapshot, or when stop() is called.

    Usage:
        async for snapshot in ProgressWatcher(store, task_id):
            render(snapshot)
    """

    def __init__(
        self,
        store: TaskStore,
        task_id: UUID,
        poll_interval_seconds: Optional[float] = None,
        max_consecutive_errors: int = 5,
    ):
        self.store = store
        self.task_id = task_id
        self.poll_interval_seconds = (
            settings.progress_poll_interval_seconds
            if poll_interval_seconds is None
            else poll_interval_seconds
        )
        self.max_consecutive_errors = max_consecutive_errors
        self.last: Optional[ProgressSnapshot] = None
        self.polls = 0
        self._stop_event = asyncio.Event()

    async def poll(self) -> Optional[ProgressSnapshot]:
        """Read the task once; return the snapshot if it differs from the last one seen."""
        task = await self.store.get_task(self.task_id)
        self.polls += 1
        snapshot = ProgressSnapshot.from_task(task)
        if not snapshot.differs_from(self.last):
            return None
        self.last = snapshot
        return snapshot

    def stop(self) -> None:
        self._stop_event.set()

    def __aiter__(self) -> AsyncIterator[ProgressSnapshot]:
        return self.changes()

    async def changes(self) -> AsyncIterator[ProgressSnapshot]:
        errors = 0
        while not self._stop_event.is_set():
            snapshot = None
            try:
                snapshot = await self.poll()
                errors = 0
            except PersistenceError as e:
                errors += 1
                logger.warning(
                    f"Progress poll for task {self.task_id} failed "
                    f"({errors}/{self.max_consecutive_errors}): {e}"
                )
                if errors >= self.max_consecutive_errors:
                    raise

            if snapshot is not None:
                yield snapshot

            if self.last is not None and self.last.is_terminal():
                return

            # Wait for next poll or stop
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.poll_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass  # Continue polling
