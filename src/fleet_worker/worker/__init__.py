"""Queue worker: claim a task, run it under a renewed lease, report the result.

The moving parts:

- ``QueueClient`` speaks the queue's HTTP contract and nothing else.
- ``LeaseState`` holds the one claimed task; ``LeaseRenewer`` reclaims it in
  a background thread and calls an abort hook if a reclaim fails.
- ``TaskExecutor`` runs the task command with output sent to log files.
- ``ArtifactUploader`` puts logs and result documents to signed URLs.
- ``TaskRunner`` composes them into one cycle; ``ProcessingLoop`` repeats
  cycles with bounded retries.

A task whose lease was lost is killed and never reported completed, since
another worker may already have claimed it.
"""

from fleet_worker.worker.errors import (
    CompletionReportError,
    FailureAllowanceExhausted,
    FleetWorkerError,
    LeaseLost,
    NoTasksAvailable,
    TaskDefinitionFetchError,
    TaskExecutionError,
    TransportError,
    UploadError,
)
from fleet_worker.worker.loop import LoopSummary, ProcessingLoop
from fleet_worker.worker.models import WorkerIdentity
from fleet_worker.worker.queue_client import QueueClient
from fleet_worker.worker.runner import TaskRunner

__all__ = [
    "CompletionReportError",
    "FailureAllowanceExhausted",
    "FleetWorkerError",
    "LeaseLost",
    "LoopSummary",
    "NoTasksAvailable",
    "ProcessingLoop",
    "QueueClient",
    "TaskDefinitionFetchError",
    "TaskExecutionError",
    "TaskRunner",
    "TransportError",
    "UploadError",
    "WorkerIdentity",
]
