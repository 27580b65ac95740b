"""Observability helpers for AuditFlow."""

from auditflow.observability.metrics import metrics

__all__ = ["metrics"]
