"""Initial AuditFlow schema."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create audit task and issue tables."""
    bind = op.get_bind()

    taskkind = sa.Enum("repository", "instant", name="taskkind")
    taskstatus = sa.Enum(
        "pending",
        "running",
        "completed",
        "failed",
        "cancelled",
        name="taskstatus",
    )
    issuetype = sa.Enum(
        "bug",
        "security",
        "performance",
        "style",
        "maintainability",
        name="issuetype",
    )
    severity = sa.Enum("critical", "high", "medium", "low", name="severity")
    issuestatus = sa.Enum("open", "resolved", "false_positive", name="issuestatus")

    for enum_type in (taskkind, taskstatus, issuetype, severity, issuestatus):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "audit_tasks",
        sa.Column("task_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("project_id", sa.String(length=255), nullable=False),
        sa.Column(
            "kind",
            postgresql.ENUM(name="taskkind", create_type=False),
            nullable=False,
            server_default="repository",
        ),
        sa.Column(
            "status",
            postgresql.ENUM(name="taskstatus", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("total_files", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("planned_files", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scanned_files", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_lines", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("issues_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quality_score", sa.Float(), nullable=True),
        sa.Column(
            "scan_config",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("scanned_files <= total_files", name="ck_audit_tasks_scanned_le_total"),
        sa.CheckConstraint(
            "quality_score IS NULL OR (quality_score >= 0 AND quality_score <= 100)",
            name="ck_audit_tasks_quality_range",
        ),
    )
    op.create_index("ix_audit_tasks_project_id", "audit_tasks", ["project_id"])
    op.create_index("idx_audit_tasks_project_created", "audit_tasks", ["project_id", "created_at"])
    op.create_index("idx_audit_tasks_status", "audit_tasks", ["status"])

    op.create_table(
        "audit_issues",
        sa.Column("issue_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "task_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("audit_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("file_path", sa.String(length=1024), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=True),
        sa.Column("column_number", sa.Integer(), nullable=True),
        sa.Column("issue_type", postgresql.ENUM(name="issuetype", create_type=False), nullable=False),
        sa.Column("severity", postgresql.ENUM(name="severity", create_type=False), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("suggestion", sa.Text(), nullable=True),
        sa.Column("code_snippet", sa.Text(), nullable=True),
        sa.Column("ai_explanation", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "status",
            postgresql.ENUM(name="issuestatus", create_type=False),
            nullable=False,
            server_default="open",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_audit_issues_task_position", "audit_issues", ["task_id", "position"])
    op.create_index("idx_audit_issues_severity", "audit_issues", ["task_id", "severity"])


def downgrade() -> None:
    """Drop audit tables and enums."""
    op.drop_index("idx_audit_issues_severity", table_name="audit_issues")
    op.drop_index("idx_audit_issues_task_position", table_name="audit_issues")
    op.drop_table("audit_issues")

    op.drop_index("idx_audit_tasks_status", table_name="audit_tasks")
    op.drop_index("idx_audit_tasks_project_created", table_name="audit_tasks")
    op.drop_index("ix_audit_tasks_project_id", table_name="audit_tasks")
    op.drop_table("audit_tasks")

    bind = op.get_bind()
    for name in ("issuestatus", "severity", "issuetype", "taskstatus", "taskkind"):
        sa.Enum(name=name).drop(bind, checkfirst=True)
