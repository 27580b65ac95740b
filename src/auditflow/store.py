"""Task store capability used by the scheduler and observers."""

from typing import Optional, Protocol, Sequence, runtime_checkable
from uuid import UUID

from auditflow.models import (
    AuditIssue,
    AuditTask,
    IssueCreate,
    ScanConfig,
    TaskKind,
    TaskUpdate,
)


@runtime_checkable
class TaskStore(Protocol):
    """
    Durable record of task status, counters and issues.

    Implementations raise TaskNotFound for unknown ids and PersistenceError
    when the backing store cannot be read or written.
    """

    async def create_task(
        self,
        project_id: str,
        kind: TaskKind = TaskKind.REPOSITORY,
        scan_config: Optional[ScanConfig] = None,
        created_by: Optional[str] = None,
    ) -> AuditTask:
        """Create a task in `pending`."""
        ...

    async def get_task(self, task_id: UUID) -> AuditTask:
        ...

    async def update_task(self, task_id: UUID, update: TaskUpdate) -> AuditTask:
        """Write only the fields set on `update`."""
        ...

    async def append_issues(self, task_id: UUID, issues: Sequence[IssueCreate]) -> int:
        """Append issues atomically; return how many were written."""
        ...

    async def list_issues(self, task_id: UUID) -> list[AuditIssue]:
        ...
