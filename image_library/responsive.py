"""Responsive breakpoint sets.

Runs the normal ingestion once per target width so that a page can offer a
``srcset`` ladder. Smaller widths are encoded at a lower quality since the
artefacts are less visible there.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Sequence

from image_library.coordinator import UploadCoordinator, gather_bounded
from image_library.errors import ImageLibraryError
from image_library.models import SourceImage, TranscodeOptions, UploadResult
from image_library.storage.base import StorageBackend

logger = logging.getLogger(__name__)

DEFAULT_WIDTHS = (640, 768, 1024, 1280, 1920)
DEFAULT_ASPECT_RATIO = 4 / 3
SMALL_WIDTH = 768
SMALL_QUALITY = 80
LARGE_QUALITY = 85


def options_for_width(
    width: int,
    aspect_ratio: float = DEFAULT_ASPECT_RATIO,
    base: Optional[TranscodeOptions] = None,
) -> TranscodeOptions:
    """Transcode options bounding the output to ``width`` at the given aspect ratio."""
    base = base or TranscodeOptions()
    return base.model_copy(
        update={
            "max_width": width,
            "max_height": max(1, round(width / aspect_ratio)),
            "quality": SMALL_QUALITY if width <= SMALL_WIDTH else LARGE_QUALITY,
        }
    )


class ResponsiveSetGenerator:
    def __init__(self, coordinator: UploadCoordinator, aspect_ratio: float = DEFAULT_ASPECT_RATIO) -> None:
        self.coordinator = coordinator
        self.aspect_ratio = aspect_ratio

    async def generate_set(
        self,
        source: SourceImage,
        widths: Iterable[int] = DEFAULT_WIDTHS,
        base_options: Optional[TranscodeOptions] = None,
        backends: Optional[Sequence[StorageBackend]] = None,
        folder: Optional[str] = None,
    ) -> Dict[int, UploadResult]:
        """Ingest ``source`` once per width.

        Returns:
            Results keyed by width, in the order requested. Widths whose
            transcode or store failed are logged and left out.
        """
        unique_widths = list(dict.fromkeys(int(w) for w in widths))

        async def run(width: int) -> Optional[UploadResult]:
            options = options_for_width(width, self.aspect_ratio, base_options)
            try:
                return await self.coordinator.ingest(source, options, backends, folder)
            except ImageLibraryError as exc:
                logger.error("Failed to generate %dpx version of %s: %s", width, source.filename, exc)
                return None

        results = await gather_bounded(
            (run(width) for width in unique_widths),
            self.coordinator.max_concurrency,
        )
        return {width: result for width, result in zip(unique_widths, results) if result is not None}
