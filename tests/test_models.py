from __future__ import annotations

from datetime import UTC, datetime

import allure
import pytest

from fleet_worker.worker.models import (
    ClaimReply,
    ExecutionRecord,
    TaskDefinition,
    WorkerIdentity,
    build_logs_document,
    build_result_document,
    parse_timestamp,
    to_json_timestamp,
)

pytestmark = [
    allure.epic("Worker Runtime"),
    allure.feature("Documents & Wire Schema"),
]


def test_worker_identity_requires_non_empty_fields() -> None:
    with pytest.raises(ValueError, match="worker_group"):
        WorkerIdentity("prov", "type", " ", "id")


def test_timestamps_use_utc_milliseconds_with_z_suffix() -> None:
    value = datetime(2014, 2, 10, 12, 30, 5, 123456, tzinfo=UTC)

    assert to_json_timestamp(value) == "2014-02-10T12:30:05.123Z"
    assert parse_timestamp("2014-02-10T12:30:05.123Z") == datetime(
        2014, 2, 10, 12, 30, 5, 123000, tzinfo=UTC
    )


def test_claim_reply_from_wire() -> None:
    reply = ClaimReply.from_wire(
        {
            "status": {"taskId": "abc", "takenUntil": "2014-02-10T12:20:00.000Z"},
            "runId": 2,
            "logsPutUrl": "http://put/logs",
            "resultPutUrl": "http://put/result",
        },
    )

    assert reply.task_id == "abc"
    assert reply.run_id == "2"
    assert reply.taken_until == datetime(2014, 2, 10, 12, 20, tzinfo=UTC)


def test_claim_reply_requires_upload_urls() -> None:
    with pytest.raises(ValueError, match="logsPutUrl"):
        ClaimReply.from_wire(
            {"status": {"taskId": "abc", "takenUntil": "2014-02-10T12:20:00.000Z"}},
        )


def test_task_definition_reads_top_level_command_without_payload() -> None:
    definition = TaskDefinition.from_document("abc", {"command": "echo", "arguments": ["hi", 1]})

    assert definition.command == "echo"
    assert definition.arguments == ["hi", "1"]


def test_task_definition_rejects_non_list_arguments() -> None:
    with pytest.raises(ValueError, match="arguments"):
        TaskDefinition.from_document("abc", {"payload": {"command": "echo", "arguments": "hi"}})


def test_result_document_shape() -> None:
    identity = WorkerIdentity("prov", "type", "group", "worker")
    record = ExecutionRecord(
        started=datetime(2014, 2, 10, 12, 0, tzinfo=UTC),
        finished=datetime(2014, 2, 10, 12, 2, tzinfo=UTC),
        exit_code=0,
    )
    artifacts = {"stdout.log": "http://store/stdout.log"}

    document = build_result_document(identity=identity, record=record, artifacts=artifacts)

    assert document == {
        "version": "0.2.0",
        "artifacts": {"stdout.log": "http://store/stdout.log"},
        "statistics": {
            "started": "2014-02-10T12:00:00.000Z",
            "finished": "2014-02-10T12:02:00.000Z",
        },
        "worker": {"workerGroup": "group", "workerId": "worker"},
        "result": {"exitcode": 0},
    }
    assert build_logs_document(artifacts) == {"version": "0.2.0", "logs": artifacts}


def test_result_document_requires_finished_record() -> None:
    identity = WorkerIdentity("prov", "type", "group", "worker")
    record = ExecutionRecord(started=datetime(2014, 2, 10, 12, 0, tzinfo=UTC))

    with pytest.raises(ValueError, match="finished"):
        build_result_document(identity=identity, record=record, artifacts={})
