#!/usr/bin/env python3
"""Golden path demo for AuditFlow: audit a directory and follow its progress."""

from __future__ import annotations

import json
import os
import sys
import time
from typing import Any
from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

TERMINAL_STATUSES = {"completed", "failed", "cancelled"}


def _env(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value


class HttpClient:
    def __init__(self, base_url: str, api_key: str | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    def request_json(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        query: dict[str, Any] | None = None,
        timeout: float = 10.0,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        if query:
            query = {k: v for k, v in query.items() if v is not None}
            if query:
                url = f"{url}?{urlencode(query)}"

        data = None
        if payload is not None:
            data = json.dumps(payload, default=str).encode("utf-8")

        req = Request(url, data=data, method=method)
        for key, value in self.headers.items():
            req.add_header(key, value)

        try:
            with urlopen(req, timeout=timeout) as response:
                raw = response.read()
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"{method} {url} failed: {exc.code} {exc.reason}: {detail}") from None

        if not raw:
            return {}
        return json.loads(raw.decode("utf-8"))


def main() -> int:
    auditflow_url = _env("AUDITFLOW_URL", "http://localhost:8080")
    api_key = _env("AUDITFLOW_API_KEY")
    source_path = _env("AUDITFLOW_SOURCE_PATH", os.getcwd())
    project_id = _env("AUDITFLOW_PROJECT_ID", "demo-project")
    poll_interval = float(_env("AUDITFLOW_POLL_INTERVAL", "2.0"))
    cancel_after = _env("AUDITFLOW_CANCEL_AFTER_FILES")

    client = HttpClient(auditflow_url, api_key=api_key)

    print("Checking health...")
    health = client.request_json("GET", "/v1/health")
    if health.get("status") != "healthy":
        raise RuntimeError(f"Unexpected health response: {health}")

    print(f"Creating audit for {source_path}...")
    task = client.request_json(
        "POST",
        "/v1/tasks",
        payload={"project_id": project_id, "source_path": source_path},
    )
    task_id = str(task.get("task_id") or "")
    if not task_id:
        raise RuntimeError(f"Missing task_id in response: {task}")
    print(f"Task created: {task_id}")

    fingerprint = None
    cancel_sent = False
    while True:
        progress = client.request_json(
            "GET",
            f"/v1/tasks/{task_id}/progress",
            query={"since": fingerprint},
        )
        if progress.get("changed"):
            fingerprint = progress["fingerprint"]
            print(
                f"[{progress['status']}] {progress['scanned_files']}/{progress['planned_files']} files, "
                f"{progress['issues_count']} issues ({progress['percent']}%)"
            )

        if progress["status"] in TERMINAL_STATUSES:
            break

        if cancel_after and not cancel_sent and progress["scanned_files"] >= int(cancel_after):
            print("Requesting cancellation...")
            client.request_json("POST", f"/v1/tasks/{task_id}/cancel")
            cancel_sent = True

        time.sleep(poll_interval)

    task = client.request_json("GET", f"/v1/tasks/{task_id}")
    issues = client.request_json("GET", f"/v1/tasks/{task_id}/issues")
    if issues.get("total") != task.get("issues_count"):
        raise RuntimeError(
            f"Issue count mismatch: record says {task.get('issues_count')}, store has {issues.get('total')}"
        )

    print(
        f"Audit {task['status']}: {task['scanned_files']} files, {task['issues_count']} issues, "
        f"quality {task.get('quality_score')}"
    )
    return 0 if task["status"] != "failed" else 1


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        raise
