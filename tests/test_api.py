"""
REST API tests.
"""

import asyncio
from uuid import uuid4

import pytest

from auditflow.config import Environment, settings
from auditflow.models import TaskStatus

from fakes import make_files


async def _wait_until_terminal(client, task_id, timeout: float = 5.0) -> dict:
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        response = await client.get(f"/v1/tasks/{task_id}")
        body = response.json()
        if TaskStatus(body["status"]).is_terminal():
            return body
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"task {task_id} still {body['status']}")
        await asyncio.sleep(0.01)


@pytest.fixture
def checkout(tmp_path):
    for name in ("a.py", "b.py", "pkg/c.py"):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("x = 1\ny = 2\n", encoding="utf-8")
    (tmp_path / "notes.md").write_text("ignored", encoding="utf-8")
    return tmp_path


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_create_audit_runs_in_background(client, checkout, analyzer):
    response = await client.post(
        "/v1/tasks",
        json={"project_id": "proj-1", "source_path": str(checkout), "exclude_patterns": [], "created_by": "bob"},
    )

    assert response.status_code == 202
    created = response.json()
    assert created["status"] == "pending"
    assert created["scan_config"]["source"] == str(checkout)

    final = await _wait_until_terminal(client, created["task_id"])

    assert final["status"] == "completed"
    assert final["total_files"] == 3
    assert final["scanned_files"] == 3
    assert final["issues_count"] == 3
    assert final["total_lines"] == 9

    issues = (await client.get(f"/v1/tasks/{created['task_id']}/issues")).json()
    assert issues["total"] == 3
    assert {i["file_path"] for i in issues["issues"]} == {"a.py", "b.py", "pkg/c.py"}


@pytest.mark.asyncio
async def test_create_audit_with_bad_source_is_rejected(client, tmp_path):
    response = await client.post(
        "/v1/tasks", json={"project_id": "proj-1", "source_path": str(tmp_path / "missing")}
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_audit_with_unreadable_source_is_rejected(client, tmp_path):
    (tmp_path / "dangling.py").symlink_to(tmp_path / "missing.py")

    response = await client.post("/v1/tasks", json={"project_id": "proj-1", "source_path": str(tmp_path)})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_audit_validates_body(client):
    response = await client.post("/v1/tasks", json={"project_id": "", "source_path": "/tmp"})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_instant_audit_returns_finished_task(client, analyzer):
    response = await client.post(
        "/v1/tasks/instant", json={"language": "python", "code": "def f():\n    return 1\n"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert body["kind"] == "instant"
    assert body["project_id"] == "instant"
    assert body["scanned_files"] == 1
    assert analyzer.calls == ["snippet.py"]


@pytest.mark.asyncio
async def test_progress_reports_unchanged_fingerprint(client, fake_store):
    task = await fake_store.create_task("proj-1")

    first = (await client.get(f"/v1/tasks/{task.task_id}/progress")).json()
    second = (await client.get(f"/v1/tasks/{task.task_id}/progress", params={"since": first["fingerprint"]})).json()

    assert first["changed"] is True
    assert first["percent"] == 0.0
    assert second["changed"] is False
    assert second["fingerprint"] == first["fingerprint"]


@pytest.mark.asyncio
async def test_cancel_records_intent_only(client, fake_store, registry):
    task = await fake_store.create_task("proj-1")

    response = await client.post(f"/v1/tasks/{task.task_id}/cancel")

    assert response.status_code == 200
    body = response.json()
    assert body["cancel_requested"] is True
    assert body["status"] == "pending"
    assert registry.is_cancelled(task.task_id)
    assert fake_store.updates == []


@pytest.mark.asyncio
async def test_cancel_of_finished_task_is_noop(client, fake_store, audit_engine):
    task = await fake_store.create_task("proj-1")

    await audit_engine.run(task.task_id, make_files(1))

    body = (await client.post(f"/v1/tasks/{task.task_id}/cancel")).json()

    assert body["cancel_requested"] is False
    assert body["status"] == "completed"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/v1/tasks/{id}"),
        ("get", "/v1/tasks/{id}/issues"),
        ("get", "/v1/tasks/{id}/progress"),
        ("post", "/v1/tasks/{id}/cancel"),
    ],
)
async def test_unknown_task_is_404(client, method, path):
    response = await getattr(client, method)(path.format(id=uuid4()))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_metrics_snapshot(client):
    await client.post("/v1/tasks/instant", json={"language": "go", "code": "package main"})

    body = (await client.get("/v1/metrics")).json()

    assert body["counters"]["audit.dispatch.count"] == 1
    assert body["counters"]["audit.tasks.completed"] == 1
    assert "audit.analyzer.duration_ms" in body["timings"]


@pytest.mark.asyncio
async def test_api_key_required_outside_insecure_dev(client, monkeypatch):
    monkeypatch.setattr(settings, "allow_insecure_dev", False)
    monkeypatch.setattr(settings, "api_key", "secret-key")

    missing = await client.get("/v1/health")
    wrong = await client.get("/v1/health", headers={"Authorization": "Bearer nope"})
    bearer = await client.get("/v1/health", headers={"Authorization": "Bearer secret-key"})
    header = await client.get("/v1/health", headers={"X-API-Key": "secret-key"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert bearer.status_code == 200
    assert header.status_code == 200


@pytest.mark.asyncio
async def test_unconfigured_api_key_fails_closed(client, monkeypatch):
    monkeypatch.setattr(settings, "allow_insecure_dev", False)
    monkeypatch.setattr(settings, "api_key", None)

    response = await client.get("/v1/health", headers={"X-API-Key": "anything"})

    assert response.status_code == 503


def test_insecure_dev_outside_development_is_refused(monkeypatch):
    from auditflow.api.deps import validate_auth_config

    monkeypatch.setattr(settings, "allow_insecure_dev", True)
    monkeypatch.setattr(settings, "env", Environment.PRODUCTION)

    with pytest.raises(RuntimeError):
        validate_auth_config()
