"""Shared test fixtures: an in-memory queue served through httpx.MockTransport."""

from __future__ import annotations

import json
import sys
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from fleet_worker.config import QueueSettings
from fleet_worker.worker.models import WorkerIdentity, to_json_timestamp
from fleet_worker.worker.queue_client import QueueClient

QUEUE_URL = "http://queue.test/v1"
STORE_URL = "http://store.test"
UPLOAD_URL = "http://upload.test"


@dataclass
class FakeQueue:
    """Scriptable queue, object store and signed-URL upload target."""

    task_id: str = "task-1"
    run_id: str = "1"
    lease: timedelta = timedelta(minutes=15)
    command: str = sys.executable
    arguments: list[str] = field(default_factory=lambda: ["-c", "print('hello')"])
    claims: deque[str] = field(default_factory=deque)
    reclaim_statuses: deque[int] = field(default_factory=deque)
    task_json_status: int = 200
    artifact_put_statuses: dict[str, int] = field(default_factory=dict)
    document_put_status: int = 200
    completed_status: int = 200
    requests: list[tuple[str, str]] = field(default_factory=list)
    artifact_bodies: dict[str, bytes] = field(default_factory=dict)
    artifact_headers: dict[str, dict[str, str]] = field(default_factory=dict)
    documents: dict[str, dict[str, Any]] = field(default_factory=dict)
    completed: list[dict[str, Any]] = field(default_factory=list)
    reclaims: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self.lock:
            self.requests.append((request.method, str(request.url)))
            return self._route(request)

    def client(self) -> QueueClient:
        return QueueClient(
            QueueSettings(base_url=QUEUE_URL, object_store_url=STORE_URL),
            transport=httpx.MockTransport(self.handler),
        )

    def calls(self, method: str, fragment: str) -> list[str]:
        return [url for verb, url in self.requests if verb == method and fragment in url]

    def _route(self, request: httpx.Request) -> httpx.Response:  # noqa: PLR0911
        host = request.url.host
        path = request.url.path
        if host == "queue.test":
            if path.startswith("/v1/claim-work/"):
                return self._claim_work()
            if path == f"/v1/task/{self.task_id}/claim":
                return self._reclaim()
            if path == f"/v1/task/{self.task_id}/artifact-urls":
                names = json.loads(request.content)["artifacts"]
                return httpx.Response(
                    200,
                    json={
                        "artifactPutUrls": {
                            name: f"{UPLOAD_URL}/artifacts/{name}" for name in names
                        },
                    },
                )
            if path == f"/v1/task/{self.task_id}/completed":
                self.completed.append(json.loads(request.content))
                return httpx.Response(self.completed_status, json={})
        if host == "store.test" and path == f"/{self.task_id}/task.json":
            return httpx.Response(
                self.task_json_status,
                json={"payload": {"command": self.command, "arguments": self.arguments}},
            )
        if host == "upload.test":
            if path.startswith("/artifacts/"):
                name = path.removeprefix("/artifacts/")
                self.artifact_bodies[name] = request.content
                self.artifact_headers[name] = dict(request.headers)
                return httpx.Response(self.artifact_put_statuses.get(name, 200))
            self.documents[str(request.url)] = json.loads(request.content)
            return httpx.Response(self.document_put_status)
        return httpx.Response(404, json={"message": f"no route for {path}"})

    def _claim_work(self) -> httpx.Response:
        outcome = self.claims.popleft() if self.claims else "empty"
        if outcome == "empty":
            return httpx.Response(204)
        if outcome != "task":
            return httpx.Response(int(outcome), json={"message": "claim failed"})
        return httpx.Response(200, json=self._reply(suffix="claim"))

    def _reclaim(self) -> httpx.Response:
        status = self.reclaim_statuses.popleft() if self.reclaim_statuses else 200
        if status != 200:
            return httpx.Response(status, json={"message": "task not found"})
        self.reclaims += 1
        reply = self._reply(suffix=f"reclaim-{self.reclaims}")
        del reply["runId"]
        return httpx.Response(200, json=reply)

    def _reply(self, *, suffix: str) -> dict[str, Any]:
        taken_until = datetime.now(tz=UTC) + self.lease
        return {
            "status": {"taskId": self.task_id, "takenUntil": to_json_timestamp(taken_until)},
            "runId": self.run_id,
            "logsPutUrl": f"{UPLOAD_URL}/logs/{self.task_id}?sig={suffix}",
            "resultPutUrl": f"{UPLOAD_URL}/result/{self.task_id}?sig={suffix}",
        }


@pytest.fixture()
def fake_queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture()
def identity() -> WorkerIdentity:
    return WorkerIdentity(
        provisioner_id="test-provisioner",
        worker_type="test-worker-type",
        worker_group="test-group",
        worker_id="test-worker",
    )
