"""API request/response schemas."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from auditflow.models import AuditIssue, AuditTask, ProgressSnapshot


# ============================================================================
# Shared schemas
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class TaskResponse(BaseModel):
    """Audit task record."""

    task_id: UUID
    project_id: str
    kind: str
    status: str
    error_message: Optional[str] = None
    total_files: int
    planned_files: int
    scanned_files: int
    total_lines: int
    issues_count: int
    quality_score: Optional[float] = None
    scan_config: dict[str, Any]
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_task(cls, task: AuditTask) -> "TaskResponse":
        return cls(
            task_id=task.task_id,
            project_id=task.project_id,
            kind=task.kind.value,
            status=task.status.value,
            error_message=task.error_message,
            total_files=task.total_files,
            planned_files=task.planned_files,
            scanned_files=task.scanned_files,
            total_lines=task.total_lines,
            issues_count=task.issues_count,
            quality_score=task.quality_score,
            scan_config=task.scan_config.model_dump(),
            created_by=task.created_by,
            created_at=task.created_at,
            updated_at=task.updated_at,
            started_at=task.started_at,
            completed_at=task.completed_at,
        )


# ============================================================================
# Task creation
# ============================================================================


class CreateAuditRequest(BaseModel):
    """Create a repository audit from a local checkout or ZIP archive."""

    project_id: str = Field(..., min_length=1, description="Owning project reference")
    source_path: str = Field(..., min_length=1, description="Directory or .zip path on the server")
    exclude_patterns: list[str] = Field(default_factory=list, description="Exclude patterns")
    max_depth: Optional[int] = Field(None, ge=0, description="Maximum directory depth")
    branch_name: Optional[str] = Field(None, description="Branch label stored with the task")
    created_by: Optional[str] = Field(None, description="Requesting user")


class InstantAuditRequest(BaseModel):
    """Analyze a single code snippet."""

    project_id: str = Field(default="instant", min_length=1)
    language: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)
    created_by: Optional[str] = None


# ============================================================================
# Issues, progress, cancellation
# ============================================================================


class IssueResponse(BaseModel):
    """Audit issue."""

    issue_id: UUID
    file_path: str
    line_number: Optional[int] = None
    column_number: Optional[int] = None
    issue_type: str
    severity: str
    title: str
    description: str
    suggestion: Optional[str] = None
    code_snippet: Optional[str] = None
    ai_explanation: Optional[dict[str, Any]] = None
    status: str
    created_at: datetime

    @classmethod
    def from_issue(cls, issue: AuditIssue) -> "IssueResponse":
        return cls(
            issue_id=issue.issue_id,
            file_path=issue.file_path,
            line_number=issue.line_number,
            column_number=issue.column_number,
            issue_type=issue.issue_type.value,
            severity=issue.severity.value,
            title=issue.title,
            description=issue.description,
            suggestion=issue.suggestion,
            code_snippet=issue.code_snippet,
            ai_explanation=issue.ai_explanation.model_dump() if issue.ai_explanation else None,
            status=issue.status.value,
            created_at=issue.created_at,
        )


class ListIssuesResponse(BaseModel):
    """Issues of one task. Order is not meaningful across files."""

    task_id: UUID
    issues: list[IssueResponse]
    total: int


class ProgressResponse(BaseModel):
    """Latest known progress for a task."""

    task_id: UUID
    status: str
    changed: bool = Field(..., description="False when the snapshot matches ?since=")
    fingerprint: str
    percent: float
    total_files: int
    planned_files: int
    scanned_files: int
    total_lines: int
    issues_count: int
    quality_score: Optional[float] = None
    error_message: Optional[str] = None

    @classmethod
    def from_snapshot(cls, snapshot: ProgressSnapshot, since: Optional[str] = None) -> "ProgressResponse":
        fingerprint = snapshot.fingerprint
        return cls(
            task_id=snapshot.task_id,
            status=snapshot.status.value,
            changed=since != fingerprint,
            fingerprint=fingerprint,
            percent=snapshot.percent,
            total_files=snapshot.total_files,
            planned_files=snapshot.planned_files,
            scanned_files=snapshot.scanned_files,
            total_lines=snapshot.total_lines,
            issues_count=snapshot.issues_count,
            quality_score=snapshot.quality_score,
            error_message=snapshot.error_message,
        )


class CancelTaskResponse(BaseModel):
    """Cancellation acknowledgment. The task status is written by the scheduler."""

    ok: bool
    task_id: UUID
    cancel_requested: bool
    status: str


class MetricsResponse(BaseModel):
    """Metrics snapshot."""

    counters: dict[str, float]
    gauges: dict[str, float]
    timings: dict[str, dict[str, Any]]
