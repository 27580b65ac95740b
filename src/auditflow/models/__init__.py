"""AuditFlow data models."""

from auditflow.models.enums import (
    FailureKind,
    IssueStatus,
    IssueType,
    Severity,
    TaskKind,
    TaskStatus,
)
from auditflow.models.task import AuditTask, ScanConfig, TaskUpdate
from auditflow.models.issue import AIExplanation, AuditIssue, IssueCreate, IssueFinding
from auditflow.models.analysis import AnalysisResult, SourceFile, count_lines
from auditflow.models.progress import ProgressSnapshot

__all__ = [
    "AIExplanation",
    "AnalysisResult",
    "AuditIssue",
    "AuditTask",
    "FailureKind",
    "IssueCreate",
    "IssueFinding",
    "IssueStatus",
    "IssueType",
    "ProgressSnapshot",
    "ScanConfig",
    "Severity",
    "SourceFile",
    "TaskKind",
    "TaskStatus",
    "TaskUpdate",
    "count_lines",
]
