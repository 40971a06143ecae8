"""Error kinds raised by the worker task cycle and processing loop."""

from __future__ import annotations


class FleetWorkerError(RuntimeError):
    """Base class for task-cycle failures."""


class TransportError(FleetWorkerError):
    """Network or unexpected HTTP status from a queue call."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TaskDefinitionFetchError(FleetWorkerError):
    """Task definition could not be fetched or is malformed."""


class LeaseLost(FleetWorkerError):
    """Lease renewal failed while the task was held; the task must not be completed."""


class UploadError(FleetWorkerError):
    """Artifact or JSON document upload failed."""


class CompletionReportError(FleetWorkerError):
    """Queue rejected or failed to receive the completion report."""


class TaskExecutionError(FleetWorkerError):
    """Task subprocess could not be started."""


class NoTasksAvailable(FleetWorkerError):
    """Queue stayed empty for the configured number of consecutive polls."""


class FailureAllowanceExhausted(FleetWorkerError):
    """Consecutive cycle failures used up the allowance."""

    def __init__(self, message: str, *, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error
