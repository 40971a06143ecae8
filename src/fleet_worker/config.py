"""Runtime configuration for the fleet worker agent."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_QUEUE_BASE_URL = "http://localhost:3000/v1"
DEFAULT_OBJECT_STORE_URL = "http://tasks.taskcluster.net"
DEFAULT_PROVISIONER_ID = "aws-provisioner"


@dataclass(slots=True)
class QueueSettings:
    """Queue and object-store endpoints plus HTTP transport settings."""

    base_url: str = DEFAULT_QUEUE_BASE_URL
    object_store_url: str = DEFAULT_OBJECT_STORE_URL
    timeout_seconds: float = 30.0
    transport_retries: int = 3


@dataclass(slots=True)
class WorkerSettings:
    """Lease renewal and processing loop settings."""

    renewal_margin_seconds: float = 180.0
    poll_interval_seconds: float = 30.0
    max_idle_polls: int = 5
    failure_allowance: int = 5
    failure_delay_seconds: float | None = None
    workdir_root: Path | None = None


@dataclass(slots=True)
class IdentitySettings:
    """Optional identity overrides; blanks are resolved from instance metadata."""

    provisioner_id: str = ""
    worker_type: str = ""
    worker_group: str = ""
    worker_id: str = ""


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    queue: QueueSettings = field(default_factory=QueueSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    identity: IdentitySettings = field(default_factory=IdentitySettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for a local queue."""

        workdir_root = os.getenv("FLEET_WORKER_WORKDIR_ROOT", "").strip()
        failure_delay = os.getenv("FLEET_WORKER_FAILURE_DELAY_SECONDS", "").strip()
        return cls(
            queue=QueueSettings(
                base_url=os.getenv("FLEET_WORKER_QUEUE_BASE_URL", DEFAULT_QUEUE_BASE_URL),
                object_store_url=os.getenv(
                    "FLEET_WORKER_OBJECT_STORE_URL",
                    DEFAULT_OBJECT_STORE_URL,
                ),
                timeout_seconds=float(os.getenv("FLEET_WORKER_HTTP_TIMEOUT_SECONDS", "30")),
                transport_retries=int(os.getenv("FLEET_WORKER_HTTP_RETRIES", "3")),
            ),
            worker=WorkerSettings(
                renewal_margin_seconds=float(
                    os.getenv("FLEET_WORKER_RENEWAL_MARGIN_SECONDS", "180"),
                ),
                poll_interval_seconds=float(
                    os.getenv("FLEET_WORKER_POLL_INTERVAL_SECONDS", "30"),
                ),
                max_idle_polls=int(os.getenv("FLEET_WORKER_MAX_IDLE_POLLS", "5")),
                failure_allowance=int(os.getenv("FLEET_WORKER_FAILURE_ALLOWANCE", "5")),
                failure_delay_seconds=float(failure_delay) if failure_delay else None,
                workdir_root=Path(workdir_root) if workdir_root else None,
            ),
            identity=IdentitySettings(
                provisioner_id=os.getenv("FLEET_WORKER_PROVISIONER_ID", "").strip(),
                worker_type=os.getenv("FLEET_WORKER_WORKER_TYPE", "").strip(),
                worker_group=os.getenv("FLEET_WORKER_WORKER_GROUP", "").strip(),
                worker_id=os.getenv("FLEET_WORKER_WORKER_ID", "").strip(),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for unusable endpoints or counters."""

        _validate_http_url(self.queue.base_url, name="FLEET_WORKER_QUEUE_BASE_URL")
        _validate_http_url(self.queue.object_store_url, name="FLEET_WORKER_OBJECT_STORE_URL")
        if self.queue.timeout_seconds <= 0:
            raise ValueError("FLEET_WORKER_HTTP_TIMEOUT_SECONDS must be > 0.")
        if self.queue.transport_retries < 0:
            raise ValueError("FLEET_WORKER_HTTP_RETRIES must be >= 0.")
        if self.worker.renewal_margin_seconds < 0:
            raise ValueError("FLEET_WORKER_RENEWAL_MARGIN_SECONDS must be >= 0.")
        if self.worker.poll_interval_seconds < 0:
            raise ValueError("FLEET_WORKER_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.worker.max_idle_polls <= 0:
            raise ValueError("FLEET_WORKER_MAX_IDLE_POLLS must be a positive integer.")
        if self.worker.failure_allowance <= 0:
            raise ValueError("FLEET_WORKER_FAILURE_ALLOWANCE must be a positive integer.")
        failure_delay = self.worker.failure_delay_seconds
        if failure_delay is not None and failure_delay < 0:
            raise ValueError("FLEET_WORKER_FAILURE_DELAY_SECONDS must be >= 0.")


def _validate_http_url(value: str, *, name: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
