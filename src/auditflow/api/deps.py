"""API dependencies."""

import logging
import secrets

from fastapi import Header, HTTPException, Request

from auditflow.config import Environment, settings
from auditflow.engine import AuditEngine

logger = logging.getLogger("auditflow.api")


def get_audit_engine(request: Request) -> AuditEngine:
    """Engine created by the application lifespan."""
    engine = getattr(request.app.state, "audit_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Audit engine not initialized")
    return engine


async def verify_api_key(
    authorization: str | None = Header(None),
    x_api_key: str | None = Header(None, alias="X-API-Key"),
) -> None:
    """
    Verify the shared API key.

    Accepts `Authorization: Bearer <key>` or `X-API-Key: <key>`. Fails closed:
    without a configured key, requests are only accepted in explicit insecure
    development mode.
    """
    if settings.allow_insecure_dev and settings.env == Environment.DEVELOPMENT:
        return

    api_key = None
    if authorization and authorization.startswith("Bearer "):
        api_key = authorization[7:]
    elif x_api_key:
        api_key = x_api_key

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Use Authorization: Bearer <key> or X-API-Key header",
        )

    if not settings.api_key:
        logger.error("No API key configured; set AUDITFLOW_API_KEY")
        raise HTTPException(
            status_code=503,
            detail="Server misconfigured: authentication not properly initialized",
        )

    if not secrets.compare_digest(api_key, settings.api_key):
        raise HTTPException(status_code=401, detail="Invalid API key")


def validate_auth_config() -> None:
    """
    Validate authentication configuration at startup.

    Raises:
        RuntimeError: If configuration is insecure for the current environment
    """
    if settings.allow_insecure_dev and settings.env != Environment.DEVELOPMENT:
        raise RuntimeError(
            f"SECURITY ERROR: allow_insecure_dev=true is only permitted in development. "
            f"Current environment: {settings.env.value}."
        )

    if settings.allow_insecure_dev:
        logger.warning("Running in INSECURE DEV MODE: API authentication is disabled")
    elif not settings.api_key:
        logger.warning("No AUDITFLOW_API_KEY configured; all API requests will be rejected")
    else:
        logger.info(f"Authentication enabled for {settings.env.value}")
