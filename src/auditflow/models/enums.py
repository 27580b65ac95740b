"""AuditFlow enumerations."""

from enum import Enum


class TaskStatus(str, Enum):
    """Audit task lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def terminal_states(cls) -> set["TaskStatus"]:
        """Return terminal states."""
        return {cls.COMPLETED, cls.FAILED, cls.CANCELLED}

    def is_terminal(self) -> bool:
        """Check if status is terminal."""
        return self in self.terminal_states()


class TaskKind(str, Enum):
    """What an audit task covers."""

    REPOSITORY = "repository"
    INSTANT = "instant"


class Severity(str, Enum):
    """Issue severity."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IssueType(str, Enum):
    """Issue category reported by the analyzer."""

    BUG = "bug"
    SECURITY = "security"
    PERFORMANCE = "performance"
    STYLE = "style"
    MAINTAINABILITY = "maintainability"


class IssueStatus(str, Enum):
    """Issue lifecycle status (resolution happens outside the engine)."""

    OPEN = "open"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


class FailureKind(str, Enum):
    """Per-file analyzer failure classes."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
