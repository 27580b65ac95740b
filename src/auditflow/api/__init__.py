"""AuditFlow REST API."""

from auditflow.api.router import router

__all__ = ["router"]
