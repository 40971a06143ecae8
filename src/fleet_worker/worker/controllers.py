"""Controller wiring settings, identity and the processing loop for the CLI."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field

from fleet_worker.config import DEFAULT_PROVISIONER_ID, Settings
from fleet_worker.http.metadata import InstanceMetadata, MetadataError
from fleet_worker.worker.errors import FailureAllowanceExhausted, NoTasksAvailable
from fleet_worker.worker.loop import LoopSummary, ProcessingLoop
from fleet_worker.worker.models import WorkerIdentity
from fleet_worker.worker.queue_client import QueueClient
from fleet_worker.worker.runner import TaskRunner

logger = logging.getLogger(__name__)

SHUTDOWN_COMMAND = ("sudo", "shutdown", "-h", "now")


@dataclass(slots=True)
class WorkerStartCommand:
    """CLI input for the long-running worker."""

    provisioner_id: str | None = None
    worker_type: str | None = None
    worker_group: str | None = None
    worker_id: str | None = None


@dataclass(slots=True)
class WorkerRunResult:
    """Printable outcome plus whether the loop ended in a terminal failure."""

    lines: list[str] = field(default_factory=list)
    terminated: bool = False


class WorkerCliController:
    """Builds the worker from settings and runs it until it stops or gives up."""

    def __init__(
        self,
        *,
        settings_loader: Callable[[], Settings] = Settings.from_env,
        metadata_factory: Callable[[], InstanceMetadata] = InstanceMetadata,
        client_factory: Callable[[Settings], QueueClient] | None = None,
    ) -> None:
        self._settings_loader = settings_loader
        self._metadata_factory = metadata_factory
        self._client_factory = client_factory or (lambda settings: QueueClient(settings.queue))

    def run_worker(self, command: WorkerStartCommand) -> WorkerRunResult:
        settings = self._settings_loader()
        settings.validate()
        identity = self.resolve_identity(command, settings)
        logger.info(
            "Starting worker %s/%s (%s, %s)",
            identity.provisioner_id,
            identity.worker_type,
            identity.worker_group,
            identity.worker_id,
        )

        with self._client_factory(settings) as client:
            loop = ProcessingLoop(
                runner=TaskRunner(
                    client=client,
                    identity=identity,
                    renewal_margin_seconds=settings.worker.renewal_margin_seconds,
                    workdir_root=settings.worker.workdir_root,
                ),
                failure_allowance=settings.worker.failure_allowance,
                max_idle_polls=settings.worker.max_idle_polls,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
                failure_delay_seconds=settings.worker.failure_delay_seconds,
            )
            try:
                summary = loop.run()
            except NoTasksAvailable as error:
                return WorkerRunResult(
                    lines=[_summary_line(loop.summary), f"Worker stopped: {error}"],
                    terminated=True,
                )
            except FailureAllowanceExhausted as error:
                return WorkerRunResult(
                    lines=[
                        _summary_line(loop.summary),
                        f"Worker stopped: {error}",
                        f"Last error: {error.last_error!r}",
                    ],
                    terminated=True,
                )
        return WorkerRunResult(lines=[_summary_line(summary)])

    def resolve_identity(self, command: WorkerStartCommand, settings: Settings) -> WorkerIdentity:
        """Fill identity fields from options, then environment, then instance metadata."""

        provisioner_id = (
            command.provisioner_id or settings.identity.provisioner_id or DEFAULT_PROVISIONER_ID
        )
        worker_type = command.worker_type or settings.identity.worker_type
        worker_group = command.worker_group or settings.identity.worker_group
        worker_id = command.worker_id or settings.identity.worker_id
        if worker_type and worker_group and worker_id:
            return WorkerIdentity(provisioner_id, worker_type, worker_group, worker_id)

        try:
            with self._metadata_factory() as metadata:
                worker_type = worker_type or metadata.worker_type()
                worker_group = worker_group or metadata.availability_zone()
                worker_id = worker_id or metadata.instance_id()
        except MetadataError as error:
            raise ValueError(
                "Worker identity is incomplete and instance metadata is unavailable: "
                f"{error}. Pass --worker-type, --worker-group and --worker-id.",
            ) from error
        return WorkerIdentity(provisioner_id, worker_type, worker_group, worker_id)


def shutdown_host() -> None:
    """Power off the host so the supervisor can replace it."""

    logger.warning("Shutting down host: %s", " ".join(SHUTDOWN_COMMAND))
    subprocess.run(SHUTDOWN_COMMAND, check=False)  # noqa: S603


def _summary_line(summary: LoopSummary) -> str:
    return (
        "Worker summary: "
        f"processed={summary.processed} succeeded={summary.succeeded} "
        f"failed={summary.failed} idle_polls={summary.idle_polls}"
    )
