"""SQL-backed task store used by the scheduler and the API."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from auditflow.db.base import get_session
from auditflow.db.repositories import IssueRepository, TaskRepository
from auditflow.engine.errors import PersistenceError, TaskNotFound
from auditflow.models import (
    AuditIssue,
    AuditTask,
    IssueCreate,
    ScanConfig,
    TaskKind,
    TaskUpdate,
)

logger = logging.getLogger(__name__)


class SqlTaskStore:
    """
    Task store over SQLAlchemy async sessions.

    Every call runs in its own short transaction, so a long-running audit
    never holds a session open between flushes.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with get_session(self._session_factory) as session:
                yield session
        except SQLAlchemyError as e:
            logger.warning(f"Task store error: {e}")
            raise PersistenceError(f"Task store unavailable: {e}") from e

    async def create_task(
        self,
        project_id: str,
        kind: TaskKind = TaskKind.REPOSITORY,
        scan_config: Optional[ScanConfig] = None,
        created_by: Optional[str] = None,
    ) -> AuditTask:
        async with self._session() as session:
            return await TaskRepository(session).create(
                project_id=project_id,
                kind=kind,
                scan_config=scan_config,
                created_by=created_by,
            )

    async def get_task(self, task_id: UUID) -> AuditTask:
        async with self._session() as session:
            task = await TaskRepository(session).get(task_id)
        if task is None:
            raise TaskNotFound(str(task_id))
        return task

    async def list_tasks(self, project_id: Optional[str] = None, limit: int = 50) -> list[AuditTask]:
        async with self._session() as session:
            return await TaskRepository(session).list(project_id=project_id, limit=limit)

    async def update_task(self, task_id: UUID, update: TaskUpdate) -> AuditTask:
        async with self._session() as session:
            task = await TaskRepository(session).update(task_id, update)
        if task is None:
            raise TaskNotFound(str(task_id))
        return task

    async def append_issues(self, task_id: UUID, issues: Sequence[IssueCreate]) -> int:
        async with self._session() as session:
            if await TaskRepository(session).get(task_id) is None:
                raise TaskNotFound(str(task_id))
            return await IssueRepository(session).append(task_id, issues)

    async def list_issues(self, task_id: UUID) -> list[AuditIssue]:
        async with self._session() as session:
            if await TaskRepository(session).get(task_id) is None:
                raise TaskNotFound(str(task_id))
            return await IssueRepository(session).list(task_id)

    async def count_issues(self, task_id: UUID) -> int:
        async with self._session() as session:
            return await IssueRepository(session).count(task_id)
