"""One claim → run → upload → complete transaction."""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from fleet_worker.worker.artifacts import ArtifactUploader
from fleet_worker.worker.errors import LeaseLost, TransportError
from fleet_worker.worker.executor import TaskExecutor
from fleet_worker.worker.lease import DEFAULT_RENEWAL_MARGIN_SECONDS, LeaseRenewer, LeaseState
from fleet_worker.worker.models import (
    ArtifactSource,
    CycleReport,
    CycleState,
    ExecutionRecord,
    TaskClaim,
    WorkerIdentity,
    build_logs_document,
    build_result_document,
    utc_now,
)
from fleet_worker.worker.queue_client import QueueClient

logger = logging.getLogger(__name__)

STDOUT_ARTIFACT = "stdout.log"
STDERR_ARTIFACT = "stderr.log"
LOG_CONTENT_TYPE = "text/plain"


class TaskRunner:
    """Runs a single task cycle and leaves no lease, process or file behind."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        client: QueueClient,
        identity: WorkerIdentity,
        executor: TaskExecutor | None = None,
        lease_state: LeaseState | None = None,
        renewal_margin_seconds: float = DEFAULT_RENEWAL_MARGIN_SECONDS,
        workdir_root: Path | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.client = client
        self.identity = identity
        self.executor = executor or TaskExecutor()
        self.lease_state = lease_state or LeaseState()
        self.renewal_margin_seconds = renewal_margin_seconds
        self.workdir_root = workdir_root
        self._clock = clock
        self.state = CycleState.IDLE

    def run_cycle(self) -> CycleReport | None:
        """Process one task; ``None`` means no task was available."""

        self.state = CycleState.IDLE
        reply = self.client.claim_work(self.identity)
        if reply is None:
            return None
        if reply.run_id is None:
            raise TransportError(f"Claim reply for task {reply.task_id} carries no runId")

        definition = self.client.fetch_task_definition(reply.task_id)
        self.lease_state.hold(
            TaskClaim(
                task_id=reply.task_id,
                run_id=reply.run_id,
                taken_until=reply.taken_until,
                logs_put_url=reply.logs_put_url,
                result_put_url=reply.result_put_url,
                definition=definition,
            ),
        )
        self.state = CycleState.CLAIMED
        logger.info("Claimed task %s run %s", reply.task_id, reply.run_id)

        workdir: Path | None = None
        try:
            workdir = Path(
                tempfile.mkdtemp(prefix=f"task-{reply.task_id}-", dir=self.workdir_root),
            )
            return self._run_claimed(workdir)
        finally:
            self.lease_state.clear()
            if workdir is not None:
                shutil.rmtree(workdir, ignore_errors=True)
            if self.state != CycleState.ABORTED:
                self.state = CycleState.IDLE

    def _run_claimed(self, workdir: Path) -> CycleReport:
        claim = self.lease_state.claim
        stdout_path = workdir / STDOUT_ARTIFACT
        stderr_path = workdir / STDERR_ARTIFACT

        record = self._execute(claim, stdout_path=stdout_path, stderr_path=stderr_path)
        if record.aborted:
            self.state = CycleState.ABORTED
            raise LeaseLost(
                f"Reclaim failed for task {claim.task_id}, task aborted "
                f"(exit code {record.exit_code})",
            )

        if record.finished is None or record.exit_code is None:
            raise RuntimeError("Execution record was not finished.")

        self.state = CycleState.UPLOADING
        uploader = ArtifactUploader(
            client=self.client,
            identity=self.identity,
            task_id=claim.task_id,
            run_id=claim.run_id,
        )
        artifacts = uploader.upload_many(
            {
                STDOUT_ARTIFACT: ArtifactSource(stdout_path, LOG_CONTENT_TYPE),
                STDERR_ARTIFACT: ArtifactSource(stderr_path, LOG_CONTENT_TYPE),
            },
        )
        uploader.put_json_many(
            [
                (claim.logs_put_url, build_logs_document(artifacts)),
                (
                    claim.result_put_url,
                    build_result_document(
                        identity=self.identity,
                        record=record,
                        artifacts=artifacts,
                    ),
                ),
            ],
        )

        self.state = CycleState.COMPLETING
        self.client.report_completed(self.identity, claim.task_id, claim.run_id)
        logger.info("Task %s completed with exit code %s", claim.task_id, record.exit_code)
        return CycleReport(
            task_id=claim.task_id,
            run_id=claim.run_id,
            exit_code=record.exit_code,
            artifacts=artifacts,
            started=record.started,
            finished=record.finished,
        )

    def _execute(
        self,
        claim: TaskClaim,
        *,
        stdout_path: Path,
        stderr_path: Path,
    ) -> ExecutionRecord:
        definition = claim.definition
        handle = self.executor.run(
            definition.command,
            definition.arguments,
            stdout_path,
            stderr_path,
        )
        record = ExecutionRecord(started=self._clock())
        self.state = CycleState.RUNNING
        aborted = threading.Event()
        renewer = LeaseRenewer(
            client=self.client,
            identity=self.identity,
            renewal_margin_seconds=self.renewal_margin_seconds,
            clock=self._clock,
        )

        def _abort() -> None:
            aborted.set()
            handle.kill()

        try:
            renewer.start(self.lease_state, _abort)
            record.exit_code = handle.wait()
        finally:
            renewer.stop()
            if record.exit_code is None:
                handle.kill()
                handle.wait()
        record.finished = self._clock()
        record.aborted = aborted.is_set()
        return record
