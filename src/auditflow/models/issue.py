"""Audit issue models."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from auditflow.models.enums import IssueStatus, IssueType, Severity


class AIExplanation(BaseModel):
    """Structured explanation attached to an issue."""

    what: str = ""
    why: str = ""
    how: str = ""
    learn_more: Optional[str] = None


class IssueFinding(BaseModel):
    """A single issue as reported by the analyzer for one file."""

    issue_type: IssueType = IssueType.MAINTAINABILITY
    severity: Severity = Severity.LOW
    title: str = "Issue"
    description: str = ""
    suggestion: Optional[str] = None
    line_number: Optional[int] = Field(default=None, ge=0)
    column_number: Optional[int] = Field(default=None, ge=0)
    code_snippet: Optional[str] = None
    ai_explanation: Optional[AIExplanation] = None


class IssueCreate(IssueFinding):
    """An analyzer finding placed on a file, ready to be appended to a task."""

    file_path: str

    @classmethod
    def from_finding(cls, file_path: str, finding: IssueFinding) -> "IssueCreate":
        return cls(file_path=file_path, **finding.model_dump())


class AuditIssue(IssueCreate):
    """Persisted audit issue."""

    issue_id: UUID
    task_id: UUID
    status: IssueStatus = IssueStatus.OPEN
    created_at: datetime
