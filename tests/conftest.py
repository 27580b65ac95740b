"""
Pytest fixtures for AuditFlow tests.
"""

import os
import sys
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Ensure test config is set before importing auditflow modules.
os.environ.setdefault("AUDITFLOW_ALLOW_INSECURE_DEV", "true")
os.environ.setdefault("AUDITFLOW_ENV", "development")
os.environ.setdefault("AUDITFLOW_DATABASE_URL", "sqlite+aiosqlite:///./auditflow_test.db")
os.environ.setdefault("AUDITFLOW_LOG_LEVEL", "WARNING")

# Test helpers live next to this file.
sys.path.insert(0, str(Path(__file__).parent))

from auditflow.db.base import Base  # noqa: E402
import auditflow.db.tables  # noqa: E402,F401
from auditflow.db.store import SqlTaskStore  # noqa: E402
from auditflow.engine import AuditEngine, SchedulerConfig  # noqa: E402
from auditflow.engine.cancellation import CancellationRegistry  # noqa: E402
from auditflow.observability.metrics import metrics  # noqa: E402

from fakes import FakeTaskStore, ScriptedAnalyzer  # noqa: E402

pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(autouse=True)
def reset_metrics():
    """Metrics are process-wide; start every test from zero."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
async def db_engine(tmp_path):
    """A fresh SQLite database per test, wired into auditflow.db.base."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'auditflow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Override global engine/session factory for dependency injection.
    from auditflow import db as db_module

    previous = (db_module.base.engine, db_module.base.async_session_factory)
    db_module.base.engine = engine
    db_module.base.async_session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    yield engine

    db_module.base.engine, db_module.base.async_session_factory = previous
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def sql_store(session_factory):
    return SqlTaskStore(session_factory)


@pytest.fixture
def fake_store():
    return FakeTaskStore()


@pytest.fixture
def registry():
    return CancellationRegistry(max_entries=64)


@pytest.fixture
def analyzer():
    return ScriptedAnalyzer()


@pytest.fixture
def fast_config():
    """No dispatch gap, no backoff, flush after every file."""
    return SchedulerConfig(
        max_concurrency=2,
        inter_dispatch_gap_ms=0,
        max_files=40,
        max_file_attempts=3,
        flush_every_files=1,
        flush_interval_seconds=60.0,
        rate_limit_backoff_ms=0,
        rate_limit_backoff_step_ms=0,
        rate_limit_backoff_max_ms=0,
    )


@pytest.fixture
def audit_engine(fake_store, analyzer, registry, fast_config):
    return AuditEngine(fake_store, analyzer, registry=registry, config=fast_config)


@pytest.fixture
async def client(audit_engine):
    """HTTP client against the app, bypassing the lifespan (no database, no real analyzer)."""
    from auditflow.main import app

    app.state.audit_engine = audit_engine
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    await audit_engine.shutdown(grace_seconds=1.0)
    del app.state.audit_engine
