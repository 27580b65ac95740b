"""SQLAlchemy table definitions."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from auditflow.db.base import Base
from auditflow.models.enums import IssueStatus, IssueType, Severity, TaskKind, TaskStatus

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum(enum_cls) -> Enum:
    """Store enum values (not member names) so the schema matches the API strings."""
    return Enum(
        enum_cls,
        name=enum_cls.__name__.lower(),
        values_callable=lambda members: [m.value for m in members],
    )


class AuditTaskTable(Base):
    """Audit tasks - one row per audit run."""

    __tablename__ = "audit_tasks"

    task_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    project_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    kind: Mapped[TaskKind] = mapped_column(_enum(TaskKind), nullable=False, default=TaskKind.REPOSITORY)

    # Status
    status: Mapped[TaskStatus] = mapped_column(
        _enum(TaskStatus), nullable=False, default=TaskStatus.PENDING
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Counters
    total_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    planned_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scanned_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    issues_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quality_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Scan configuration (replaced wholesale on update)
    scan_config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    issues: Mapped[list["AuditIssueTable"]] = relationship(
        "AuditIssueTable",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_audit_tasks_project_created", "project_id", "created_at"),
        Index("idx_audit_tasks_status", "status"),
    )


class AuditIssueTable(Base):
    """Issues found by the analyzer, owned by exactly one task."""

    __tablename__ = "audit_issues"

    issue_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    task_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("audit_tasks.task_id", ondelete="CASCADE"),
        nullable=False,
    )
    # Append order within the task
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    line_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    column_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    issue_type: Mapped[IssueType] = mapped_column(_enum(IssueType), nullable=False)
    severity: Mapped[Severity] = mapped_column(_enum(Severity), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    suggestion: Mapped[str | None] = mapped_column(Text, nullable=True)
    code_snippet: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_explanation: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    status: Mapped[IssueStatus] = mapped_column(
        _enum(IssueStatus), nullable=False, default=IssueStatus.OPEN
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    task: Mapped["AuditTaskTable"] = relationship("AuditTaskTable", back_populates="issues")

    __table_args__ = (
        Index("idx_audit_issues_task_position", "task_id", "position"),
        Index("idx_audit_issues_severity", "task_id", "severity"),
    )
