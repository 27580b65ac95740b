"""Audit task model - one audit run over a set of files."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from auditflow.models.enums import TaskKind, TaskStatus


class ScanConfig(BaseModel):
    """User-supplied scan configuration stored with the task."""

    exclude_patterns: list[str] = Field(default_factory=list)
    max_depth: Optional[int] = Field(default=None, ge=0)
    source: Optional[str] = None
    branch_name: Optional[str] = None


class AuditTask(BaseModel):
    """Persisted audit task record."""

    # Identity
    task_id: UUID
    project_id: str
    kind: TaskKind = TaskKind.REPOSITORY

    # Status
    status: TaskStatus = TaskStatus.PENDING
    error_message: Optional[str] = None

    # Counters
    total_files: int = 0
    planned_files: int = 0
    scanned_files: int = 0
    total_lines: int = 0
    issues_count: int = 0
    quality_score: Optional[float] = None

    scan_config: ScanConfig = Field(default_factory=ScanConfig)
    created_by: Optional[str] = None

    # Timestamps
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def is_terminal(self) -> bool:
        """Check if task is in a terminal state."""
        return self.status.is_terminal()

    def can_transition_to(self, new_status: TaskStatus) -> bool:
        """Check if transition to new status is valid per state machine."""
        valid_transitions: dict[TaskStatus, set[TaskStatus]] = {
            TaskStatus.PENDING: {
                TaskStatus.RUNNING,
                TaskStatus.FAILED,  # Rejected configuration
                TaskStatus.CANCELLED,  # Cancel observed before first dispatch
            },
            TaskStatus.RUNNING: {
                TaskStatus.COMPLETED,
                TaskStatus.FAILED,
                TaskStatus.CANCELLED,
            },
            TaskStatus.COMPLETED: set(),
            TaskStatus.FAILED: set(),
            TaskStatus.CANCELLED: set(),
        }
        return new_status in valid_transitions.get(self.status, set())


class TaskUpdate(BaseModel):
    """
    Partial update of a task record.

    Only fields explicitly set are written; nested JSON (scan_config) is
    replaced wholesale, never merged.
    """

    status: Optional[TaskStatus] = None
    error_message: Optional[str] = None
    total_files: Optional[int] = Field(default=None, ge=0)
    planned_files: Optional[int] = Field(default=None, ge=0)
    scanned_files: Optional[int] = Field(default=None, ge=0)
    total_lines: Optional[int] = Field(default=None, ge=0)
    issues_count: Optional[int] = Field(default=None, ge=0)
    quality_score: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    scan_config: Optional[ScanConfig] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller supplied."""
        return self.model_dump(exclude_unset=True)
