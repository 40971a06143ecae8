"""Domain models for claimed tasks, executions and reported documents."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

DOCUMENT_VERSION = "0.2.0"


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def parse_timestamp(value: str) -> datetime:
    """Parse a queue timestamp such as ``2014-02-10T12:00:00.000Z`` into an aware datetime."""

    text = value.strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def to_json_timestamp(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class CycleState(str, Enum):
    """Task cycle states as seen by the runner."""

    IDLE = "idle"
    CLAIMED = "claimed"
    RUNNING = "running"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class WorkerIdentity:
    """Identifies this agent to the queue on every call."""

    provisioner_id: str
    worker_type: str
    worker_group: str
    worker_id: str

    def __post_init__(self) -> None:
        for name in ("provisioner_id", "worker_type", "worker_group", "worker_id"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"WorkerIdentity.{name} must be a non-empty string.")

    def worker_payload(self) -> dict[str, str]:
        return {"workerGroup": self.worker_group, "workerId": self.worker_id}


@dataclass(slots=True)
class ClaimReply:
    """Queue reply to a claim or reclaim call."""

    task_id: str
    run_id: str | None
    taken_until: datetime
    logs_put_url: str
    result_put_url: str

    @classmethod
    def from_wire(cls, body: object) -> ClaimReply:
        """Parse the camelCase ``/v1`` reply shape; raise ValueError when malformed."""

        if not isinstance(body, dict):
            raise ValueError("Claim reply must be a JSON object.")
        status = body.get("status")
        if not isinstance(status, dict):
            raise ValueError("Claim reply is missing 'status'.")
        task_id = status.get("taskId")
        taken_until = status.get("takenUntil")
        if not isinstance(task_id, str) or not task_id:
            raise ValueError("Claim reply is missing 'status.taskId'.")
        if not isinstance(taken_until, str) or not taken_until:
            raise ValueError("Claim reply is missing 'status.takenUntil'.")
        run_id = body.get("runId")
        logs_put_url = body.get("logsPutUrl")
        result_put_url = body.get("resultPutUrl")
        if not isinstance(logs_put_url, str) or not isinstance(result_put_url, str):
            raise ValueError("Claim reply is missing 'logsPutUrl' or 'resultPutUrl'.")
        return cls(
            task_id=task_id,
            run_id=None if run_id is None else str(run_id),
            taken_until=parse_timestamp(taken_until),
            logs_put_url=logs_put_url,
            result_put_url=result_put_url,
        )


@dataclass(slots=True)
class TaskDefinition:
    """Fetched task body with the execution parameters the worker needs."""

    task_id: str
    command: str
    arguments: list[str] = field(default_factory=list)
    document: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, task_id: str, document: object) -> TaskDefinition:
        if not isinstance(document, dict):
            raise ValueError("Task definition must be a JSON object.")
        payload = document.get("payload", document)
        if not isinstance(payload, dict):
            raise ValueError("Task definition 'payload' must be a JSON object.")
        command = payload.get("command")
        if not isinstance(command, str) or not command.strip():
            raise ValueError("Task definition is missing 'payload.command'.")
        arguments = payload.get("arguments", [])
        if not isinstance(arguments, list):
            raise ValueError("Task definition 'payload.arguments' must be a list.")
        return cls(
            task_id=task_id,
            command=command,
            arguments=[str(item) for item in arguments],
            document=document,
        )


@dataclass(slots=True)
class TaskClaim:
    """Currently held task and its lease."""

    task_id: str
    run_id: str
    taken_until: datetime
    logs_put_url: str
    result_put_url: str
    definition: TaskDefinition


@dataclass(slots=True)
class ExecutionRecord:
    started: datetime
    finished: datetime | None = None
    exit_code: int | None = None
    aborted: bool = False


@dataclass(frozen=True, slots=True)
class ArtifactSource:
    """File to upload as a named artifact."""

    source_file: Path
    content_type: str | None = None


@dataclass(slots=True)
class CycleReport:
    """Outcome of one completed task cycle."""

    task_id: str
    run_id: str
    exit_code: int
    artifacts: dict[str, str]
    started: datetime
    finished: datetime


def build_result_document(
    *,
    identity: WorkerIdentity,
    record: ExecutionRecord,
    artifacts: dict[str, str],
) -> dict[str, Any]:
    """Result document uploaded to ``resultPutUrl`` before completion is reported."""

    if record.finished is None or record.exit_code is None:
        raise ValueError("Execution record must be finished before building the result.")
    return {
        "version": DOCUMENT_VERSION,
        "artifacts": dict(artifacts),
        "statistics": {
            "started": to_json_timestamp(record.started),
            "finished": to_json_timestamp(record.finished),
        },
        "worker": identity.worker_payload(),
        "result": {"exitcode": record.exit_code},
    }


def build_logs_document(logs: dict[str, str]) -> dict[str, Any]:
    return {"version": DOCUMENT_VERSION, "logs": dict(logs)}
