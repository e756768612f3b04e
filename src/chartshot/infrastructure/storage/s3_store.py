"""S3-compatible artifact store.

boto3 is synchronous, so every call is pushed onto a worker thread with
``asyncio.to_thread`` and bounded by the configured upload timeout.
"""

from __future__ import annotations

import asyncio
import json
import posixpath
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from chartshot.domain.entities.artifact import UploadResult
from chartshot.domain.exceptions import UploadError
from chartshot.infrastructure.config.schema import S3Config

log = structlog.get_logger(__name__)

_CONTENT_TYPES: dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".json": "application/json",
}


def content_type_for(path: str | Path) -> str:
    return _CONTENT_TYPES.get(Path(path).suffix.lower(), "application/octet-stream")


def build_s3_client(config: S3Config) -> Any:
    """Create a boto3 S3 client from config (static keys optional)."""
    kwargs: dict[str, Any] = {
        "region_name": config.region,
        "config": BotoConfig(
            connect_timeout=10,
            read_timeout=config.upload_timeout_seconds,
            retries={"max_attempts": 3, "mode": "standard"},
        ),
    }
    if config.endpoint_url:
        kwargs["endpoint_url"] = config.endpoint_url
    if config.access_key_id and config.secret_access_key:
        kwargs["aws_access_key_id"] = config.access_key_id
        kwargs["aws_secret_access_key"] = config.secret_access_key
    return boto3.client("s3", **kwargs)


class S3ArtifactStore:
    """Uploads artifacts under ``{image_prefix}/{key}``.

    Args:
        config: S3 section of the app config.
        client: Pre-built boto3 S3 client (tests inject a mock).
    """

    def __init__(self, config: S3Config, client: Any | None = None) -> None:
        self._config = config
        self._client = client if client is not None else build_s3_client(config)

    def full_key(self, key: str) -> str:
        prefix = self._config.image_prefix.strip("/")
        return posixpath.join(prefix, key) if prefix else key

    def object_url(self, full_key: str) -> str:
        if self._config.endpoint_url:
            base = self._config.endpoint_url.rstrip("/")
            return f"{base}/{self._config.bucket}/{full_key}"
        return (
            f"https://{self._config.bucket}.s3.{self._config.region}"
            f".amazonaws.com/{full_key}"
        )

    async def upload(self, local_path: Path, key: str) -> UploadResult:
        try:
            body = await asyncio.to_thread(local_path.read_bytes)
        except OSError as e:
            raise UploadError(key, f"cannot read {local_path}: {e}") from e
        return await self._put(body, key, content_type_for(local_path))

    async def upload_json(self, data: Any, key: str) -> UploadResult:
        body = json.dumps(data, ensure_ascii=False, default=str).encode("utf-8")
        return await self._put(body, key, "application/json")

    async def _put(self, body: bytes, key: str, content_type: str) -> UploadResult:
        full_key = self.full_key(key)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(
                    self._client.put_object,
                    Bucket=self._config.bucket,
                    Key=full_key,
                    Body=body,
                    ContentType=content_type,
                ),
                timeout=self._config.upload_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            log.error("upload_timeout", key=full_key, timeout=self._config.upload_timeout_seconds)
            raise UploadError(full_key, "timed out") from e
        except (BotoCoreError, ClientError) as e:
            log.error("upload_failed", key=full_key, error=str(e))
            raise UploadError(full_key, str(e)) from e

        result = UploadResult(
            url=self.object_url(full_key),
            key=full_key,
            size=len(body),
            uploaded_at=datetime.now(timezone.utc),
        )
        log.info(
            "upload_complete",
            key=full_key,
            size=result.size,
            content_type=content_type,
        )
        return result
