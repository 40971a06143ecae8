"""HTTP client for the queue's claim/reclaim/artifact/complete contract."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from fleet_worker import __version__
from fleet_worker.config import QueueSettings
from fleet_worker.worker.errors import (
    CompletionReportError,
    TaskDefinitionFetchError,
    TransportError,
)
from fleet_worker.worker.models import ClaimReply, TaskDefinition, WorkerIdentity

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"fleet-worker/{__version__}"


class QueueClient:
    """Stateless wrapper over the queue and object-store endpoints.

    Every call takes the identity and task coordinates explicitly; the client
    keeps no record of which task is held.
    """

    def __init__(
        self,
        settings: QueueSettings,
        *,
        transport: httpx.BaseTransport | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._base_url = settings.base_url.rstrip("/")
        self._object_store_url = settings.object_store_url.rstrip("/")
        self._client = httpx.Client(
            timeout=httpx.Timeout(settings.timeout_seconds, connect=10.0),
            headers={"User-Agent": user_agent},
            transport=transport or httpx.HTTPTransport(retries=settings.transport_retries),
            follow_redirects=True,
        )

    @property
    def http(self) -> httpx.Client:
        """Shared HTTP client, also used for uploads to signed URLs."""

        return self._client

    def claim_work(self, identity: WorkerIdentity) -> ClaimReply | None:
        """Claim a pending task; ``None`` means the queue has nothing for us."""

        url = self._queue_url(f"/claim-work/{identity.provisioner_id}/{identity.worker_type}")
        logger.debug("GET: %s", url)
        response = self._send("GET", url, json=identity.worker_payload())
        if response.status_code == httpx.codes.NO_CONTENT:
            logger.debug("No task available for %s", identity.worker_type)
            return None
        if response.status_code != httpx.codes.OK:
            raise TransportError(
                f"claim-work failed with HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return _parse_claim_reply(response, action="claim-work")

    def fetch_task_definition(self, task_id: str) -> TaskDefinition:
        url = f"{self._object_store_url}/{task_id}/task.json"
        logger.debug("GET: %s", url)
        try:
            response = self._client.get(url)
        except httpx.HTTPError as error:
            raise TaskDefinitionFetchError(
                f"Failed to fetch task.json for {task_id}: {error}",
            ) from error
        if not response.is_success:
            raise TaskDefinitionFetchError(
                f"Failed to fetch task.json for {task_id}: HTTP {response.status_code}",
            )
        try:
            definition = TaskDefinition.from_document(task_id, response.json())
        except ValueError as error:
            raise TaskDefinitionFetchError(
                f"Invalid task.json for {task_id}: {error}",
            ) from error
        logger.debug("Task claimed: %s", task_id)
        return definition

    def reclaim(self, identity: WorkerIdentity, task_id: str, run_id: str) -> ClaimReply:
        """Renew the lease on a held task. Failures propagate, no retry here."""

        url = self._queue_url(f"/task/{task_id}/claim")
        logger.debug("POST: %s", url)
        response = self._send("POST", url, json=_run_payload(identity, run_id))
        if not response.is_success:
            raise TransportError(
                f"Failed to reclaim task {task_id}: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        reply = _parse_claim_reply(response, action="reclaim")
        logger.debug("Successfully reclaimed task %s", task_id)
        return reply

    def request_artifact_urls(
        self,
        identity: WorkerIdentity,
        task_id: str,
        run_id: str,
        artifacts: dict[str, str],
    ) -> dict[str, str]:
        """Exchange ``{name: contentType}`` declarations for signed PUT URLs."""

        url = self._queue_url(f"/task/{task_id}/artifact-urls")
        logger.debug("POST: %s", url)
        payload = _run_payload(identity, run_id)
        payload["artifacts"] = {
            name: {"contentType": content_type} for name, content_type in artifacts.items()
        }
        response = self._send("POST", url, json=payload)
        if not response.is_success:
            raise TransportError(
                f"Failed to get signed artifact URLs for {task_id}: "
                f"HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        try:
            put_urls = response.json()["artifactPutUrls"]
        except (ValueError, KeyError, TypeError) as error:
            raise TransportError(
                f"Malformed artifact-urls reply for {task_id}: {error}",
                status_code=response.status_code,
            ) from error
        missing = sorted(name for name in artifacts if not isinstance(put_urls.get(name), str))
        if missing:
            raise TransportError(
                f"artifact-urls reply for {task_id} lacks URLs for: {', '.join(missing)}",
                status_code=response.status_code,
            )
        return {name: put_urls[name] for name in artifacts}

    def report_completed(self, identity: WorkerIdentity, task_id: str, run_id: str) -> None:
        url = self._queue_url(f"/task/{task_id}/completed")
        logger.debug("POST: %s", url)
        try:
            response = self._client.post(url, json=_run_payload(identity, run_id))
        except httpx.HTTPError as error:
            raise CompletionReportError(
                f"Failed to report task {task_id} completed: {error}",
            ) from error
        if not response.is_success:
            raise CompletionReportError(
                f"Failed to report task {task_id} completed, error code: {response.status_code}",
            )
        logger.debug("Successfully reported task %s completed", task_id)

    def artifact_url(self, task_id: str, run_id: str, name: str) -> str:
        """Canonical public URL of an uploaded artifact."""

        return f"{self._object_store_url}/{task_id}/runs/{run_id}/artifacts/{name}"

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> QueueClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _queue_url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _send(self, method: str, url: str, *, json: dict[str, Any]) -> httpx.Response:
        try:
            return self._client.request(method, url, json=json)
        except httpx.HTTPError as error:
            logger.warning("HTTP error on %s %s: %s", method, url, error)
            raise TransportError(f"{method} {url} failed: {error}") from error


def _run_payload(identity: WorkerIdentity, run_id: str) -> dict[str, Any]:
    payload: dict[str, Any] = identity.worker_payload()
    payload["runId"] = run_id
    return payload


def _parse_claim_reply(response: httpx.Response, *, action: str) -> ClaimReply:
    try:
        return ClaimReply.from_wire(response.json())
    except ValueError as error:
        raise TransportError(
            f"Malformed {action} reply: {error}",
            status_code=response.status_code,
        ) from error
