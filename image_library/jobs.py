"""Queue job functions.

Jobs run inside an rq worker process (see ``workers/image_worker.py``), so
they rebuild their own backends from the environment instead of sharing the
API process's instances.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from image_library.config import build_coordinator, load_settings
from image_library.models import SourceImage
from image_library.responsive import DEFAULT_WIDTHS, ResponsiveSetGenerator

logger = logging.getLogger(__name__)


def generate_set_job(
    data: bytes,
    content_type: str,
    filename: str,
    widths: Optional[List[int]] = None,
    folder: Optional[str] = None,
) -> dict:
    """Generate a responsive set and return it as JSON-ready data keyed by width."""
    settings = load_settings()
    source = SourceImage(data=data, content_type=content_type, filename=filename)

    async def run() -> dict:
        coordinator = build_coordinator(settings)
        try:
            results = await ResponsiveSetGenerator(coordinator).generate_set(
                source, widths or DEFAULT_WIDTHS, folder=folder
            )
        finally:
            await coordinator.close()
        return {str(width): result.model_dump(mode="json") for width, result in results.items()}

    logger.info("Generating responsive set for %s", filename)
    return asyncio.run(run())
