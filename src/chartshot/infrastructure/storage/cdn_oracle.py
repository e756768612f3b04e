"""CDN existence oracle over HTTP HEAD."""

from __future__ import annotations

from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING

import structlog
from httpx import HTTPError

from chartshot.domain.entities.artifact import ArtifactMetadata

if TYPE_CHECKING:
    from httpx import AsyncClient, Headers

log = structlog.get_logger(__name__)


def _parse_size(headers: Headers) -> int:
    raw = headers.get("content-length")
    if raw is None:
        return 0
    try:
        return max(0, int(raw))
    except ValueError:
        return 0


def _parse_last_modified(headers: Headers) -> datetime | None:
    raw = headers.get("last-modified")
    if not raw:
        return None
    try:
        return parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None


class HttpExistenceOracle:
    """Asks the CDN whether an artifact URL is already served.

    Only a 200 counts as "exists". Every transport problem (timeout,
    DNS, connection reset) is logged and reported as "absent", so a flaky
    CDN costs at most one redundant capture.

    Args:
        http_client: Shared httpx.AsyncClient (injected).
        timeout_seconds: Max time per HEAD request (default: 10s).
    """

    def __init__(self, http_client: AsyncClient, timeout_seconds: float = 10.0) -> None:
        self.http_client = http_client
        self.timeout = timeout_seconds

    async def exists(self, url: str) -> bool:
        return await self.probe(url) is not None

    async def probe(self, url: str) -> ArtifactMetadata | None:
        try:
            response = await self.http_client.head(
                url, timeout=self.timeout, follow_redirects=True
            )
        except HTTPError as e:
            log.warning(
                "existence_check_failed",
                url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if response.status_code != 200:
            log.debug("existence_check_miss", url=url, status=response.status_code)
            return None

        return ArtifactMetadata(
            url=url,
            size=_parse_size(response.headers),
            last_modified=_parse_last_modified(response.headers),
        )
