"""
Cancellation tests: registry semantics and how a running audit observes intent.
"""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from uuid import uuid4

import pytest

from auditflow.engine import AuditEngine, TaskNotFound
from auditflow.engine.cancellation import CancellationRegistry, get_cancellation_registry
from auditflow.engine.errors import TransientAnalyzerError
from auditflow.models import TaskStatus

from fakes import make_files


# ============================================================================
# Registry
# ============================================================================


def test_request_cancel_is_idempotent():
    registry = CancellationRegistry()
    task_id = uuid4()

    registry.request_cancel(task_id)
    registry.request_cancel(task_id)

    assert registry.is_cancelled(task_id)
    assert len(registry) == 1


def test_registry_keys_accept_uuid_or_string():
    registry = CancellationRegistry()
    task_id = uuid4()

    registry.request_cancel(str(task_id))

    assert registry.is_cancelled(task_id)
    assert registry.clear(task_id) is True
    assert registry.clear(task_id) is False
    assert not registry.is_cancelled(task_id)


def test_registry_evicts_oldest_when_full():
    registry = CancellationRegistry(max_entries=2)
    first, second, third = uuid4(), uuid4(), uuid4()

    registry.request_cancel(first)
    registry.request_cancel(second)
    registry.request_cancel(third)

    assert len(registry) == 2
    assert not registry.is_cancelled(first)
    assert registry.is_cancelled(second)
    assert registry.is_cancelled(third)


def test_registry_rejects_nonpositive_bound():
    with pytest.raises(ValueError):
        CancellationRegistry(max_entries=0)


def test_registry_is_thread_safe():
    """Many threads writing and reading never lose an entry or raise."""
    registry = CancellationRegistry(max_entries=10_000)
    task_ids = [uuid4() for _ in range(2_000)]
    barrier = threading.Barrier(8)

    def hammer(offset):
        barrier.wait()
        for task_id in task_ids[offset::8]:
            registry.request_cancel(task_id)
            assert registry.is_cancelled(task_id)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(hammer, range(8)))

    assert len(registry) == len(task_ids)
    assert all(registry.is_cancelled(t) for t in task_ids)


def test_process_registry_is_a_singleton():
    assert get_cancellation_registry() is get_cancellation_registry()


# ============================================================================
# Scheduler observing cancellation
# ============================================================================


@pytest.mark.asyncio
async def test_cancel_after_two_dispatches_stops_remaining_files(fake_store, analyzer, audit_engine, registry):
    """
    Five files, two workers. Cancel while the first two are in flight:
    both finish, nothing else is dispatched, and the task ends cancelled.
    """
    task = await audit_engine.create_task("proj-1")
    files = make_files(5)
    releases = [analyzer.block(files[0].path), analyzer.block(files[1].path)]

    running = asyncio.create_task(audit_engine.run(task.task_id, files))
    await analyzer.wait_started(files[0].path)
    await analyzer.wait_started(files[1].path)

    assert await audit_engine.request_cancel(task.task_id) is True
    # Intent only: the scheduler has not written anything yet.
    assert (await audit_engine.get_task(task.task_id)).status == TaskStatus.RUNNING

    for release in releases:
        release.set()
    result = await running

    assert result.status == TaskStatus.CANCELLED
    assert result.scanned_files == 2
    assert result.issues_count == 2
    assert result.completed_at is not None
    assert sorted(analyzer.calls) == sorted([files[0].path, files[1].path])
    assert not registry.is_cancelled(task.task_id)


@pytest.mark.asyncio
async def test_cancel_after_everything_was_dispatched_has_no_effect(fake_store, analyzer, audit_engine):
    task = await audit_engine.create_task("proj-1")
    files = make_files(2)
    releases = [analyzer.block(f.path) for f in files]

    running = asyncio.create_task(audit_engine.run(task.task_id, files))
    for source in files:
        await analyzer.wait_started(source.path)

    await audit_engine.request_cancel(task.task_id)
    for release in releases:
        release.set()
    result = await running

    assert result.status == TaskStatus.COMPLETED
    assert result.scanned_files == 2


@pytest.mark.asyncio
async def test_cancel_before_start_skips_all_dispatches(fake_store, analyzer, audit_engine, registry):
    task = await audit_engine.create_task("proj-1")

    assert await audit_engine.request_cancel(task.task_id) is True
    result = await audit_engine.run(task.task_id, make_files(3))

    assert result.status == TaskStatus.CANCELLED
    assert analyzer.calls == []
    assert fake_store.statuses(task.task_id) == [TaskStatus.CANCELLED]
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_cancel_lets_a_dispatched_file_finish_its_retries(fake_store, analyzer, audit_engine):
    """A file already seen by the analyzer is retried even after cancellation is requested."""
    task = await audit_engine.create_task("proj-1")
    files = make_files(2)
    analyzer.script(files[0].path, TransientAnalyzerError("connection reset", "network"))
    releases = [analyzer.block(f.path) for f in files]

    running = asyncio.create_task(audit_engine.run(task.task_id, files))
    for source in files:
        await analyzer.wait_started(source.path)
    await audit_engine.request_cancel(task.task_id)
    for release in releases:
        release.set()
    result = await running

    assert result.status == TaskStatus.COMPLETED
    assert result.scanned_files == 2
    assert result.issues_count == 2
    assert analyzer.calls_for(files[0].path) == 2


@pytest.mark.asyncio
async def test_cancel_during_retry_still_stops_unclaimed_files(fake_store, analyzer, audit_engine, fast_config):
    task = await audit_engine.create_task("proj-1")
    files = make_files(3)
    analyzer.script(files[0].path, TransientAnalyzerError("connection reset", "network"))
    release = analyzer.block(files[0].path)

    running = asyncio.create_task(
        audit_engine.run(task.task_id, files, config=replace(fast_config, max_concurrency=1))
    )
    await analyzer.wait_started(files[0].path)
    await audit_engine.request_cancel(task.task_id)
    release.set()
    result = await running

    assert result.status == TaskStatus.CANCELLED
    assert result.scanned_files == 1
    assert analyzer.calls == [files[0].path, files[0].path]


@pytest.mark.asyncio
async def test_cancel_of_terminal_task_is_noop(fake_store, analyzer, audit_engine, registry):
    task = await audit_engine.create_task("proj-1")
    await audit_engine.run(task.task_id, make_files(1))
    writes = len(fake_store.updates)

    assert await audit_engine.request_cancel(task.task_id) is False

    assert len(fake_store.updates) == writes
    assert (await audit_engine.get_task(task.task_id)).status == TaskStatus.COMPLETED
    assert not registry.is_cancelled(task.task_id)


@pytest.mark.asyncio
async def test_cancel_racing_a_finished_run_leaves_no_intent(fake_store, analyzer, audit_engine, registry, monkeypatch):
    """The first read sees a running task; by the time intent is recorded the run has finished."""
    task = await audit_engine.create_task("proj-1")
    finished = await audit_engine.run(task.task_id, make_files(1))
    reads = [finished.model_copy(update={"status": TaskStatus.RUNNING})]
    read_store = fake_store.get_task

    async def get_task(task_id):
        return reads.pop(0) if reads else await read_store(task_id)

    monkeypatch.setattr(fake_store, "get_task", get_task)

    assert await audit_engine.request_cancel(task.task_id) is False
    assert not registry.is_cancelled(task.task_id)


@pytest.mark.asyncio
async def test_cancel_of_unknown_task_raises(audit_engine):
    with pytest.raises(TaskNotFound):
        await audit_engine.request_cancel(uuid4())


@pytest.mark.asyncio
async def test_stale_intent_is_cleared_when_rerun_finds_terminal_task(fake_store, analyzer, audit_engine, registry):
    task = await audit_engine.create_task("proj-1")
    await audit_engine.run(task.task_id, make_files(1))
    registry.request_cancel(task.task_id)

    result = await audit_engine.run(task.task_id, make_files(1))

    assert result.status == TaskStatus.COMPLETED
    assert not registry.is_cancelled(task.task_id)


# ============================================================================
# Shutdown
# ============================================================================


@pytest.mark.asyncio
async def test_shutdown_drains_running_audits_as_cancelled(fake_store, analyzer, audit_engine, fast_config):
    task = await audit_engine.create_task("proj-1")
    files = make_files(3)
    release = analyzer.block(files[0].path)

    background = audit_engine.start(task.task_id, files, config=replace(fast_config, max_concurrency=1))
    await analyzer.wait_started(files[0].path)

    stopping = asyncio.create_task(audit_engine.shutdown(grace_seconds=5.0))
    await asyncio.sleep(0)
    release.set()
    await stopping

    result = await background
    assert result.status == TaskStatus.CANCELLED
    assert result.scanned_files == 1


@pytest.mark.asyncio
async def test_shutdown_cancels_stragglers_and_marks_them_failed(fake_store, analyzer, audit_engine):
    task = await audit_engine.create_task("proj-1")
    files = make_files(2)
    analyzer.block(files[0].path)
    analyzer.block(files[1].path)

    background = audit_engine.start(task.task_id, files)
    await analyzer.wait_started(files[0].path)

    await audit_engine.shutdown(grace_seconds=0.05)

    assert background.cancelled()
    stored = await audit_engine.get_task(task.task_id)
    assert stored.status == TaskStatus.FAILED
    assert stored.error_message == "Audit interrupted by shutdown"


@pytest.mark.asyncio
async def test_engine_uses_shared_registry_by_default(fake_store, analyzer):
    engine = AuditEngine(fake_store, analyzer)

    assert engine.registry is get_cancellation_registry()
    assert engine.scheduler.registry is engine.registry
