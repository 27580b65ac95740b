"""Progress snapshot model - what observers see of a task."""

import hashlib
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from auditflow.models.enums import TaskStatus
from auditflow.models.task import AuditTask


class ProgressSnapshot(BaseModel):
    """Point-in-time view of a task's counters and status."""

    task_id: UUID
    status: TaskStatus
    total_files: int
    planned_files: int
    scanned_files: int
    total_lines: int
    issues_count: int
    quality_score: Optional[float] = None
    error_message: Optional[str] = None

    @classmethod
    def from_task(cls, task: AuditTask) -> "ProgressSnapshot":
        return cls(
            task_id=task.task_id,
            status=task.status,
            total_files=task.total_files,
            planned_files=task.planned_files,
            scanned_files=task.scanned_files,
            total_lines=task.total_lines,
            issues_count=task.issues_count,
            quality_score=task.quality_score,
            error_message=task.error_message,
        )

    @property
    def percent(self) -> float:
        """Share of planned files scanned, 0-100. A completed task is always 100."""
        if self.status == TaskStatus.COMPLETED:
            return 100.0
        if self.planned_files <= 0:
            return 0.0
        return round(min(self.scanned_files, self.planned_files) * 100.0 / self.planned_files, 1)

    def is_terminal(self) -> bool:
        return self.status.is_terminal()

    def differs_from(self, other: Optional["ProgressSnapshot"]) -> bool:
        """True when any observed counter or the status changed."""
        if other is None:
            return True
        return self.model_dump() != other.model_dump()

    @property
    def fingerprint(self) -> str:
        """Stable digest of the observed fields, used for change suppression over HTTP."""
        raw = self.model_dump_json()
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]
