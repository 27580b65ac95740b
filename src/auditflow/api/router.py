"""REST API router."""

import asyncio
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from auditflow import __version__
from auditflow.api.deps import get_audit_engine, verify_api_key
from auditflow.api.schemas import (
    CancelTaskResponse,
    CreateAuditRequest,
    HealthResponse,
    InstantAuditRequest,
    IssueResponse,
    ListIssuesResponse,
    MetricsResponse,
    ProgressResponse,
    TaskResponse,
)
from auditflow.engine import AuditEngine, InvalidScanConfiguration, TaskNotFound
from auditflow.models import ScanConfig, TaskKind
from auditflow.observability.metrics import metrics
from auditflow.sources import collect_source_files

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])


# ============================================================================
# Health & Metrics
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics():
    """In-process metrics snapshot."""
    return MetricsResponse(**metrics.snapshot())


# ============================================================================
# Tasks
# ============================================================================


@router.post("/tasks", response_model=TaskResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_audit(
    request: CreateAuditRequest,
    engine: AuditEngine = Depends(get_audit_engine),
):
    """Create a repository audit and start it in the background."""
    scan_config = ScanConfig(
        exclude_patterns=request.exclude_patterns,
        max_depth=request.max_depth,
        source=request.source_path,
        branch_name=request.branch_name,
    )

    try:
        files = await asyncio.to_thread(
            collect_source_files,
            request.source_path,
            request.exclude_patterns,
            request.max_depth,
        )
    except InvalidScanConfiguration as e:
        raise HTTPException(status_code=422, detail=e.message)

    task = await engine.create_task(
        project_id=request.project_id,
        kind=TaskKind.REPOSITORY,
        scan_config=scan_config,
        created_by=request.created_by,
    )
    engine.start(task.task_id, files)
    return TaskResponse.from_task(task)


@router.post("/tasks/instant", response_model=TaskResponse)
async def create_instant_audit(
    request: InstantAuditRequest,
    engine: AuditEngine = Depends(get_audit_engine),
):
    """Analyze one snippet and return the finished task."""
    task = await engine.analyze_snippet(
        project_id=request.project_id,
        code=request.code,
        language=request.language,
        created_by=request.created_by,
    )
    if task is None:
        raise HTTPException(status_code=503, detail="Audit result could not be persisted")
    return TaskResponse.from_task(task)


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: UUID,
    engine: AuditEngine = Depends(get_audit_engine),
):
    """Get an audit task."""
    try:
        task = await engine.get_task(task_id)
    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    return TaskResponse.from_task(task)


@router.get("/tasks/{task_id}/issues", response_model=ListIssuesResponse)
async def list_issues(
    task_id: UUID,
    engine: AuditEngine = Depends(get_audit_engine),
):
    """List issues found so far."""
    try:
        issues = await engine.list_issues(task_id)
    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    return ListIssuesResponse(
        task_id=task_id,
        issues=[IssueResponse.from_issue(issue) for issue in issues],
        total=len(issues),
    )


@router.get("/tasks/{task_id}/progress", response_model=ProgressResponse)
async def get_progress(
    task_id: UUID,
    since: Optional[str] = Query(None, description="Fingerprint of the last snapshot seen"),
    engine: AuditEngine = Depends(get_audit_engine),
):
    """
    Latest progress snapshot.

    Pollers pass back the previous fingerprint as ?since= and skip
    re-rendering while `changed` is false.
    """
    try:
        snapshot = await engine.get_progress(task_id)
    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    return ProgressResponse.from_snapshot(snapshot, since=since)


@router.post("/tasks/{task_id}/cancel", response_model=CancelTaskResponse)
async def cancel_task(
    task_id: UUID,
    engine: AuditEngine = Depends(get_audit_engine),
):
    """
    Request cancellation.

    Only records intent; the running audit stops dispatching new files and
    writes `cancelled` itself once in-flight files finish.
    """
    try:
        requested = await engine.request_cancel(task_id)
        task = await engine.get_task(task_id)
    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    return CancelTaskResponse(
        ok=True,
        task_id=task_id,
        cancel_requested=requested,
        status=task.status.value,
    )
