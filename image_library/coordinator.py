"""Upload orchestration.

The coordinator runs one ingestion end to end: validate the declared
metadata, transcode off the event loop, then store every variant on every
target backend concurrently. The partial-failure policy is:

- the WebP variant is mandatory; if it cannot be stored on a required
  backend (after one retry), or ends up stored on no backend at all, the
  call raises :class:`StoreFailed`;
- every other variant is optional; a missing or unstorable optional variant
  is logged and listed in ``UploadResult.omitted``.

The result is built only once every attempted store has settled, so a
cancelled or failed call leaves at most unreferenced blobs behind.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar, Union

from image_library.errors import ImageLibraryError, StoreFailed
from image_library.image_ops import CONTENT_TYPES, EncodedVariant, Transcoder, content_type_for
from image_library.keys import build_key, generate_base_name
from image_library.models import (
    SourceImage,
    StoredAsset,
    TranscodeOptions,
    UploadProgress,
    UploadResult,
    VariantKind,
)
from image_library.savings import calculate_savings
from image_library.storage.base import StorageBackend
from image_library.validation import ImageValidator

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (key, progress) for a single ingest; batch callers also get the input index.
IngestProgressCallback = Callable[[str, UploadProgress], None]
BatchProgressCallback = Callable[[int, str, UploadProgress], None]

DEFAULT_FOLDER = "pictures"
MANDATORY_RETRIES = 1


async def gather_bounded(coros: Iterable[Awaitable[T]], limit: Optional[int] = None) -> List[T]:
    """``asyncio.gather`` with an optional cap on how many run at once."""
    if not limit:
        return await asyncio.gather(*coros)
    semaphore = asyncio.Semaphore(limit)

    async def run(coro: Awaitable[T]) -> T:
        async with semaphore:
            return await coro

    return await asyncio.gather(*(run(c) for c in coros))


class UploadCoordinator:
    """Validator -> Transcoder -> StorageBackends for uploaded images.

    Args:
        backends: Default target backends, in priority order. The first one
            is treated as primary when building ``UploadResult.url``.
        validator: Upload validator; defaults to the 10 MiB / image allow-list.
        transcoder: Image transcoder.
        default_options: Options used when ``ingest`` gets none.
        max_concurrency: Cap on concurrent ingestions in batch calls.
            ``None`` means unbounded.
        default_folder: Key namespace used when the caller passes none.
    """

    def __init__(
        self,
        backends: Sequence[StorageBackend],
        validator: Optional[ImageValidator] = None,
        transcoder: Optional[Transcoder] = None,
        default_options: Optional[TranscodeOptions] = None,
        max_concurrency: Optional[int] = None,
        default_folder: str = DEFAULT_FOLDER,
    ) -> None:
        if not backends:
            raise ValueError("At least one storage backend is required")
        self.backends = list(backends)
        self.validator = validator or ImageValidator()
        self.transcoder = transcoder or Transcoder()
        self.default_options = default_options or TranscodeOptions()
        self.max_concurrency = max_concurrency
        self.default_folder = default_folder

    async def ingest(
        self,
        source: SourceImage,
        options: Optional[TranscodeOptions] = None,
        backends: Optional[Sequence[StorageBackend]] = None,
        folder: Optional[str] = None,
        progress: Optional[IngestProgressCallback] = None,
    ) -> UploadResult:
        """Validate, transcode and store one image.

        Raises:
            ValidationRejected: Declared type or size not accepted.
            DecodeFailed: The bytes are not a readable image.
            EncodeFailed: The WebP variant could not be encoded.
            StoreFailed: The WebP variant could not be stored on a required backend.
        """
        targets = list(backends or self.backends)
        opts = options or self.default_options
        self.validator.validate(source)

        transcoded = await asyncio.to_thread(self.transcoder.transcode, source, opts)

        base_name = generate_base_name(source.filename)
        folder = folder if folder is not None else self.default_folder
        jobs = [
            (variant, backend)
            for variant in transcoded.variants.values()
            for backend in targets
        ]
        outcomes = await asyncio.gather(
            *(self._store(variant, backend, build_key(folder, base_name, variant.extension), progress)
              for variant, backend in jobs),
            return_exceptions=True,
        )

        assets: List[StoredAsset] = []
        fatal: Optional[StoreFailed] = None
        mandatory_failure: Optional[StoreFailed] = None
        for (variant, backend), outcome in zip(jobs, outcomes):
            if isinstance(outcome, StoredAsset):
                assets.append(outcome)
            elif isinstance(outcome, StoreFailed):
                if variant.kind.mandatory:
                    mandatory_failure = mandatory_failure or outcome
                if variant.kind.mandatory and backend.required:
                    logger.error("Mandatory %s variant failed on %s: %s", variant.kind.value, backend.name, outcome)
                    fatal = fatal or outcome
                else:
                    logger.warning("Dropping %s variant on %s: %s", variant.kind.value, backend.name, outcome)
            else:
                raise outcome
        if fatal is not None:
            raise fatal

        stored_kinds = {asset.variant for asset in assets}
        # The mandatory variant must land on at least one backend.
        missing = [kind for kind in transcoded.variants if kind.mandatory and kind not in stored_kinds]
        if missing:
            logger.error("Mandatory %s variant was not stored on any backend", missing[0].value)
            raise mandatory_failure or StoreFailed(f"{missing[0].value} variant was not stored on any backend")
        omitted = list(transcoded.omitted)
        omitted.extend(kind for kind in transcoded.variants if kind not in stored_kinds and kind not in omitted)
        savings = {
            kind: calculate_savings(source.size, variant.size)
            for kind, variant in transcoded.variants.items()
            if kind in stored_kinds
        }
        return UploadResult(
            assets=assets,
            metadata=transcoded.metadata,
            original_size=source.size,
            savings=savings,
            omitted=omitted,
        )

    async def _store(
        self,
        variant: EncodedVariant,
        backend: StorageBackend,
        key: str,
        progress: Optional[IngestProgressCallback],
    ) -> StoredAsset:
        callback = (lambda event: progress(key, event)) if progress else None
        return await backend.put(
            key,
            variant.data,
            variant.content_type,
            progress=callback,
            retries=MANDATORY_RETRIES if variant.kind.mandatory else 0,
            variant=variant.kind,
        )

    async def ingest_many(
        self,
        sources: Sequence[SourceImage],
        options: Optional[TranscodeOptions] = None,
        backends: Optional[Sequence[StorageBackend]] = None,
        folder: Optional[str] = None,
        progress: Optional[BatchProgressCallback] = None,
    ) -> List[Union[UploadResult, ImageLibraryError]]:
        """Ingest every source independently.

        The returned list is aligned with ``sources``: each slot holds either
        the ``UploadResult`` or the typed error for that image.
        """

        async def run(index: int, source: SourceImage) -> Union[UploadResult, ImageLibraryError]:
            callback = (lambda key, event: progress(index, key, event)) if progress else None
            try:
                return await self.ingest(source, options, backends, folder, callback)
            except ImageLibraryError as exc:
                logger.warning("Upload %d (%s) failed: %s", index, source.filename, exc)
                return exc

        return await gather_bounded(
            (run(i, source) for i, source in enumerate(sources)),
            self.max_concurrency,
        )

    async def upload_original(
        self,
        source: SourceImage,
        backends: Optional[Sequence[StorageBackend]] = None,
        folder: Optional[str] = None,
        progress: Optional[IngestProgressCallback] = None,
    ) -> UploadResult:
        """Store the uploaded bytes unmodified, without transcoding."""
        targets = list(backends or self.backends)
        self.validator.validate(source)
        metadata = await asyncio.to_thread(self.transcoder.probe, source)

        extension = os.path.splitext(source.filename)[1].lstrip(".").lower()
        if extension not in CONTENT_TYPES:
            # Unknown or missing extension: trust the decoded format instead.
            extension = metadata.format if metadata.format in CONTENT_TYPES else "jpg"
        key = build_key(
            folder if folder is not None else self.default_folder,
            generate_base_name(source.filename),
            extension,
        )
        content_type = content_type_for(extension)
        assets = await asyncio.gather(
            *(backend.put(
                key,
                source.data,
                content_type,
                progress=(lambda event: progress(key, event)) if progress else None,
                retries=MANDATORY_RETRIES,
                variant=VariantKind.ORIGINAL,
            ) for backend in targets)
        )
        return UploadResult(assets=list(assets), metadata=metadata, original_size=source.size)

    async def delete(self, key: str, backends: Optional[Sequence[StorageBackend]] = None) -> Dict[str, bool]:
        """Best-effort delete of ``key`` on every backend."""
        targets = list(backends or self.backends)
        results = await asyncio.gather(*(backend.delete(key) for backend in targets))
        return {backend.name: ok for backend, ok in zip(targets, results)}

    async def close(self) -> None:
        for backend in self.backends:
            await backend.close()
