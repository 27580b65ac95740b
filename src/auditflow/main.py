"""AuditFlow main application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from auditflow import __version__
from auditflow.analyzers import HttpAnalyzer
from auditflow.api import router
from auditflow.api.deps import validate_auth_config
from auditflow.config import settings
from auditflow.db import SqlTaskStore, close_db, init_db
from auditflow.engine import AuditEngine, SchedulerConfig

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("auditflow")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting AuditFlow server...")
    logger.info(f"Environment: {settings.env.value}")

    # Fail fast on insecure configuration
    validate_auth_config()

    await init_db()
    logger.info("Database initialized")

    if not settings.analyzer_endpoint:
        logger.warning("AUDITFLOW_ANALYZER_ENDPOINT not set; audits will fail until it is configured")

    analyzer = HttpAnalyzer()
    config = SchedulerConfig.from_settings()
    config.validate()
    app.state.audit_engine = AuditEngine(SqlTaskStore(), analyzer, config=config)
    logger.info(
        f"Audit engine ready (concurrency={config.max_concurrency}, "
        f"gap={config.inter_dispatch_gap_ms}ms, max_files={config.max_files})"
    )

    yield

    logger.info("Shutting down AuditFlow server...")
    await app.state.audit_engine.shutdown(grace_seconds=settings.shutdown_grace_seconds)
    await analyzer.aclose()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="AuditFlow",
    description="Orchestrates long-running, analyzer-backed code audits",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-API-Key"],
)

app.include_router(router)


def main():
    """Entry point for the application."""
    uvicorn.run(
        "auditflow.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
