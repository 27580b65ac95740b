"""AuditFlow engine errors."""

from typing import Optional


class AuditFlowError(Exception):
    """Base error for AuditFlow operations."""

    def __init__(self, message: str, code: str = "AUDITFLOW_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class TaskNotFound(AuditFlowError):
    """Task does not exist."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}", "TASK_NOT_FOUND")
        self.task_id = task_id


class InvalidStateTransition(AuditFlowError):
    """Invalid task state transition."""

    def __init__(self, current_status: str, requested_status: str):
        super().__init__(
            f"Invalid transition from {current_status} to {requested_status}",
            "INVALID_STATE_TRANSITION",
        )
        self.current_status = current_status
        self.requested_status = requested_status


class InvalidScanConfiguration(AuditFlowError):
    """Scan or concurrency configuration rejected before the task starts."""

    def __init__(self, message: str):
        super().__init__(message, "INVALID_SCAN_CONFIGURATION")


class PersistenceError(AuditFlowError):
    """Task store could not read or write."""

    def __init__(self, message: str):
        super().__init__(message, "PERSISTENCE_ERROR")


class AnalyzerError(AuditFlowError):
    """Analyzer call for one file failed."""

    transient = False

    def __init__(self, message: str, reason: str = "analyzer_error"):
        super().__init__(message, reason.upper())
        self.reason = reason


class TransientAnalyzerError(AnalyzerError):
    """Failure worth retrying: network blip, provider rate limit, timeout."""

    transient = True

    def __init__(
        self,
        message: str,
        reason: str = "transient",
        retry_after_seconds: Optional[float] = None,
    ):
        super().__init__(message, reason)
        self.retry_after_seconds = retry_after_seconds


class PermanentAnalyzerError(AnalyzerError):
    """Failure tied to the input: malformed content, unsupported language, too large."""

    def __init__(self, message: str, reason: str = "permanent"):
        super().__init__(message, reason)


class AnalyzerUnavailable(AuditFlowError):
    """The analyzer cannot be reached at all; the whole task cannot proceed."""

    def __init__(self, message: str):
        super().__init__(message, "ANALYZER_UNAVAILABLE")
