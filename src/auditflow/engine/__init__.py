"""AuditFlow engine - task orchestration."""

from auditflow.engine.core import AuditEngine
from auditflow.engine.errors import (
    AnalyzerError,
    AnalyzerUnavailable,
    AuditFlowError,
    InvalidScanConfiguration,
    InvalidStateTransition,
    PermanentAnalyzerError,
    PersistenceError,
    TaskNotFound,
    TransientAnalyzerError,
)
from auditflow.engine.scheduler import AuditScheduler, SchedulerConfig

__all__ = [
    "AnalyzerError",
    "AnalyzerUnavailable",
    "AuditEngine",
    "AuditFlowError",
    "AuditScheduler",
    "InvalidScanConfiguration",
    "InvalidStateTransition",
    "PermanentAnalyzerError",
    "PersistenceError",
    "SchedulerConfig",
    "TaskNotFound",
    "TransientAnalyzerError",
]
