"""Database repositories for AuditFlow entities."""

from typing import Any, Sequence
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from auditflow.db.tables import AuditIssueTable, AuditTaskTable
from auditflow.engine.errors import InvalidStateTransition
from auditflow.models import (
    AIExplanation,
    AuditIssue,
    AuditTask,
    IssueCreate,
    ScanConfig,
    TaskKind,
    TaskStatus,
    TaskUpdate,
)
from auditflow.utils.time import ensure_utc, utc_now

MAX_TITLE_LENGTH = 512

# Columns a partial update may explicitly reset to NULL
NULLABLE_FIELDS = {"error_message", "quality_score", "started_at", "completed_at"}


class TaskRepository:
    """Repository for audit task operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        project_id: str,
        kind: TaskKind = TaskKind.REPOSITORY,
        scan_config: ScanConfig | None = None,
        created_by: str | None = None,
    ) -> AuditTask:
        """Create a pending task."""
        now = utc_now()
        task_row = AuditTaskTable(
            task_id=uuid4(),
            project_id=project_id,
            kind=kind,
            status=TaskStatus.PENDING,
            total_files=0,
            planned_files=0,
            scanned_files=0,
            total_lines=0,
            issues_count=0,
            scan_config=(scan_config or ScanConfig()).model_dump(),
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self.session.add(task_row)
        await self.session.flush()
        return self._row_to_model(task_row)

    async def get(self, task_id: UUID, for_update: bool = False) -> AuditTask | None:
        """Get a task by ID."""
        query = select(AuditTaskTable).where(AuditTaskTable.task_id == task_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query.execution_options(populate_existing=True))
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def list(
        self,
        project_id: str | None = None,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[AuditTask]:
        """List tasks, newest first."""
        query = select(AuditTaskTable)
        if project_id:
            query = query.where(AuditTaskTable.project_id == project_id)
        if status:
            query = query.where(AuditTaskTable.status == status)
        query = query.order_by(AuditTaskTable.created_at.desc()).limit(limit)

        result = await self.session.execute(query)
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def update(self, task_id: UUID, changes: TaskUpdate) -> AuditTask | None:
        """
        Apply a partial update.

        Only fields set on `changes` are written. A terminal task can never go
        back to pending or running; a terminal-to-terminal write is accepted so
        the scheduler's own final status wins over a racing external writer.

        Raises:
            InvalidStateTransition: if the update would re-open a terminal task
        """
        current = await self.get(task_id, for_update=True)
        if current is None:
            return None

        values: dict[str, Any] = changes.changes()
        new_status = values.get("status")
        if new_status is not None and new_status != current.status:
            if current.is_terminal() and not new_status.is_terminal():
                raise InvalidStateTransition(current.status.value, new_status.value)
            if not current.is_terminal() and not current.can_transition_to(new_status):
                raise InvalidStateTransition(current.status.value, new_status.value)

        values = {k: v for k, v in values.items() if v is not None or k in NULLABLE_FIELDS}
        values["updated_at"] = utc_now()

        await self.session.execute(
            update(AuditTaskTable)
            .where(AuditTaskTable.task_id == task_id)
            .values(**values)
        )
        return await self.get(task_id)

    def _row_to_model(self, row: AuditTaskTable) -> AuditTask:
        """Convert database row to model."""
        return AuditTask(
            task_id=row.task_id,
            project_id=row.project_id,
            kind=row.kind,
            status=row.status,
            error_message=row.error_message,
            total_files=row.total_files,
            planned_files=row.planned_files,
            scanned_files=row.scanned_files,
            total_lines=row.total_lines,
            issues_count=row.issues_count,
            quality_score=row.quality_score,
            scan_config=ScanConfig(**(row.scan_config or {})),
            created_by=row.created_by,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
            started_at=ensure_utc(row.started_at),
            completed_at=ensure_utc(row.completed_at),
        )


class IssueRepository:
    """Repository for audit issue operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def count(self, task_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(AuditIssueTable).where(AuditIssueTable.task_id == task_id)
        )
        return int(result.scalar_one())

    async def append(self, task_id: UUID, issues: Sequence[IssueCreate]) -> int:
        """Append issues after the task's existing ones, in the order given."""
        if not issues:
            return 0

        result = await self.session.execute(
            select(func.max(AuditIssueTable.position)).where(AuditIssueTable.task_id == task_id)
        )
        last_position = result.scalar_one_or_none()
        next_position = 0 if last_position is None else last_position + 1

        now = utc_now()
        for offset, issue in enumerate(issues):
            self.session.add(
                AuditIssueTable(
                    issue_id=uuid4(),
                    task_id=task_id,
                    position=next_position + offset,
                    file_path=issue.file_path,
                    line_number=issue.line_number,
                    column_number=issue.column_number,
                    issue_type=issue.issue_type,
                    severity=issue.severity,
                    title=issue.title[:MAX_TITLE_LENGTH],
                    description=issue.description,
                    suggestion=issue.suggestion,
                    code_snippet=issue.code_snippet,
                    ai_explanation=issue.ai_explanation.model_dump() if issue.ai_explanation else None,
                    created_at=now,
                )
            )
        await self.session.flush()
        return len(issues)

    async def list(self, task_id: UUID) -> list[AuditIssue]:
        """List a task's issues in append order."""
        result = await self.session.execute(
            select(AuditIssueTable)
            .where(AuditIssueTable.task_id == task_id)
            .order_by(AuditIssueTable.position)
        )
        return [self._row_to_model(r) for r in result.scalars().all()]

    def _row_to_model(self, row: AuditIssueTable) -> AuditIssue:
        """Convert database row to model."""
        return AuditIssue(
            issue_id=row.issue_id,
            task_id=row.task_id,
            file_path=row.file_path,
            line_number=row.line_number,
            column_number=row.column_number,
            issue_type=row.issue_type,
            severity=row.severity,
            title=row.title,
            description=row.description,
            suggestion=row.suggestion,
            code_snippet=row.code_snippet,
            ai_explanation=AIExplanation(**row.ai_explanation) if row.ai_explanation else None,
            status=row.status,
            created_at=ensure_utc(row.created_at),
        )
