"""Storage backend abstraction for image bytes.

Every backend stores a blob under a key and resolves a public URL for it.
The write path (progress reporting, retry with backoff, wrapping failures in
:class:`~image_library.errors.StoreFailed`) lives here once; concrete
backends only implement the raw operations.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from image_library.errors import StoreFailed
from image_library.keys import normalize_key
from image_library.models import StoredAsset, VariantKind
from image_library.storage.progress import ProgressCallback, ProgressReporter

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Durable, publicly readable blob storage.

    Attributes:
        name: Identifier recorded on every :class:`StoredAsset`.
        required: When True, failing to store the mandatory variant here
            fails the whole ingestion.
        retry_backoff: Base delay in seconds before a retried write. The
            n-th retry waits ``retry_backoff * 2 ** n``.
    """

    name: str = "storage"
    required: bool = True
    retry_backoff: float = 0.5

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        *,
        progress: Optional[ProgressCallback] = None,
        retries: int = 0,
        variant: Optional[VariantKind] = None,
    ) -> StoredAsset:
        """Write ``data`` under ``key`` and return the stored asset.

        Args:
            key: Backend-relative path, e.g. ``pictures/cake-1700000000000-ab12cd34.webp``.
            data: Bytes to store.
            content_type: MIME type recorded with the object.
            progress: Optional callback receiving ``UploadProgress`` events.
            retries: Extra attempts after a failed write.
            variant: Variant tag copied onto the returned asset.

        Raises:
            StoreFailed: Every attempt failed.
        """
        key = normalize_key(key)
        reporter = ProgressReporter(len(data), progress) if progress else None
        if reporter:
            reporter.start()

        attempt = 0
        while True:
            try:
                await self._write(key, data, content_type, reporter)
                break
            except Exception as exc:
                if attempt >= retries:
                    if reporter:
                        reporter.finish(success=False)
                    raise StoreFailed(
                        f"Failed to store {key} on {self.name}: {exc}", key=key, backend=self.name
                    ) from exc
                delay = self.retry_backoff * (2 ** attempt)
                logger.warning("Write of %s to %s failed (%s), retrying in %.2fs", key, self.name, exc, delay)
                attempt += 1
                await asyncio.sleep(delay)

        if reporter:
            reporter.finish(success=True)
        logger.info("Stored %s on %s (%d bytes)", key, self.name, len(data))
        return StoredAsset(
            key=key,
            url=self.resolve_url(key),
            size=len(data),
            content_type=content_type,
            backend=self.name,
            variant=variant,
        )

    @abstractmethod
    async def _write(self, key: str, data: bytes, content_type: str, reporter: Optional[ProgressReporter]) -> None:
        """Perform one write attempt. Raise on failure."""
        raise NotImplementedError

    @abstractmethod
    def resolve_url(self, key: str) -> str:
        """Public URL for ``key``. Pure function of the key and configuration."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns False when it was missing or could not be removed."""
        raise NotImplementedError

    @abstractmethod
    async def fetch(self, key: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError

    async def close(self) -> None:
        """Release any client resources. Called once at shutdown."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
