"""AuditFlow database layer."""

from auditflow.db.base import Base, close_db, configure_engine, get_session, init_db
from auditflow.db.tables import AuditIssueTable, AuditTaskTable
from auditflow.db.store import SqlTaskStore

__all__ = [
    "AuditIssueTable",
    "AuditTaskTable",
    "Base",
    "SqlTaskStore",
    "close_db",
    "configure_engine",
    "get_session",
    "init_db",
]
