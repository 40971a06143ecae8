"""Uploads of task artifacts and JSON documents to signed URLs."""

from __future__ import annotations

import json
import logging
import mimetypes
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import httpx

from fleet_worker.worker.errors import FleetWorkerError, UploadError
from fleet_worker.worker.models import ArtifactSource, WorkerIdentity
from fleet_worker.worker.queue_client import QueueClient

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
_CHUNK_SIZE = 64 * 1024


class ArtifactUploader:
    """Uploads files and documents for one claimed run."""

    def __init__(
        self,
        *,
        client: QueueClient,
        identity: WorkerIdentity,
        task_id: str,
        run_id: str,
        max_workers: int = 2,
    ) -> None:
        self.client = client
        self.identity = identity
        self.task_id = task_id
        self.run_id = run_id
        self.max_workers = max_workers

    def upload(self, name: str, path: Path, content_type: str | None = None) -> str:
        """Upload ``path`` as artifact ``name`` and return its public URL."""

        if not path.is_file():
            raise UploadError(f"No such file: {path}")
        content_type = content_type or guess_content_type(path)
        size = path.stat().st_size

        try:
            put_urls = self.client.request_artifact_urls(
                self.identity,
                self.task_id,
                self.run_id,
                {name: content_type},
            )
        except FleetWorkerError as error:
            raise UploadError(f"Failed to get a signed URL for artifact {name}: {error}") from error
        logger.debug("Got signed artifact PUT URL for %s", name)

        try:
            response = self.client.http.put(
                put_urls[name],
                content=_iter_file(path),
                headers={"Content-Type": content_type, "Content-Length": str(size)},
            )
        except (httpx.HTTPError, OSError) as error:
            raise UploadError(f"Failed to upload artifact {name}: {error}") from error
        if not response.is_success:
            raise UploadError(
                f"Failed to upload artifact {name} to signed PUT URL: HTTP {response.status_code}",
            )
        logger.debug("Successfully uploaded artifact %s", name)
        return self.client.artifact_url(self.task_id, self.run_id, name)

    def upload_many(self, artifacts: dict[str, ArtifactSource]) -> dict[str, str]:
        """Upload all artifacts concurrently; every upload must succeed."""

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                name: pool.submit(self.upload, name, source.source_file, source.content_type)
                for name, source in artifacts.items()
            }
            return {name: future.result() for name, future in futures.items()}

    def put_json(self, url: str, document: dict[str, Any]) -> None:
        body = json.dumps(document).encode("utf-8")
        try:
            response = self.client.http.put(
                url,
                content=body,
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as error:
            raise UploadError(f"Failed to upload JSON document: {error}") from error
        if not response.is_success:
            raise UploadError(
                f"Failed to upload JSON document: HTTP {response.status_code}: {response.text}",
            )

    def put_json_many(self, documents: list[tuple[str, dict[str, Any]]]) -> None:
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(self.put_json, url, document) for url, document in documents]
            for future in futures:
                future.result()


def guess_content_type(path: Path) -> str:
    content_type, _ = mimetypes.guess_type(path.name)
    return content_type or DEFAULT_CONTENT_TYPE


def _iter_file(path: Path) -> Iterator[bytes]:
    with path.open("rb") as handle:
        while chunk := handle.read(_CHUNK_SIZE):
            yield chunk
