"""EC2 instance-metadata lookups used for default worker identity values."""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

METADATA_BASE_URL = "http://169.254.169.254/2012-01-12/meta-data"
DEFAULT_TIMEOUT_SECONDS = 5.0


class MetadataError(RuntimeError):
    """Instance metadata service did not answer a lookup."""


class InstanceMetadata:
    """Thin text client over the instance metadata service."""

    def __init__(
        self,
        *,
        base_url: str = METADATA_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(timeout=httpx.Timeout(timeout_seconds), transport=transport)

    def image_id(self) -> str:
        return self._get_text("ami-id")

    def instance_type(self) -> str:
        return self._get_text("instance-type")

    def availability_zone(self) -> str:
        return self._get_text("placement/availability-zone")

    def instance_id(self) -> str:
        return self._get_text("instance-id")

    def worker_type(self) -> str:
        """Worker type derived from instance type and AMI, e.g. ``m1-small_ami-1234``."""

        return f"{self.instance_type().replace('.', '-')}_{self.image_id()}"

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> InstanceMetadata:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _get_text(self, path: str) -> str:
        url = f"{self._base_url}/{path}"
        try:
            response = self._client.get(url)
        except httpx.HTTPError as error:
            logger.warning("HTTP error fetching %s: %s", url, error)
            raise MetadataError(f"Instance metadata lookup failed for {path}: {error}") from error
        if not response.is_success:
            raise MetadataError(
                f"Instance metadata lookup failed for {path}: HTTP {response.status_code}",
            )
        return response.text.strip()
