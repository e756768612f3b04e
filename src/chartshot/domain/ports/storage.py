"""Storage ports: the durable object store and the CDN existence oracle."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from chartshot.domain.entities.artifact import ArtifactMetadata, UploadResult


@runtime_checkable
class ArtifactStorePort(Protocol):
    """Uploads local artifacts and returns where they landed.

    Errors surface as :class:`~chartshot.domain.exceptions.UploadError`.
    """

    async def upload(self, local_path: Path, key: str) -> UploadResult: ...

    async def upload_json(self, data: Any, key: str) -> UploadResult: ...


@runtime_checkable
class ExistenceOraclePort(Protocol):
    """Answers "is this artifact already on the CDN?".

    Transport errors count as "does not exist", never as failures.
    """

    async def exists(self, url: str) -> bool: ...

    async def probe(self, url: str) -> ArtifactMetadata | None: ...
