"""Upload validation.

Checks only what the client declared (MIME type) and the byte length. The
content is not decoded here; corrupt or spoofed images are caught by the
transcoder and reported as :class:`~image_library.errors.DecodeFailed`.
"""

from __future__ import annotations

from typing import Iterable, Optional

from image_library.errors import ValidationRejected
from image_library.models import SourceImage

DEFAULT_ALLOWED_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/avif",
)
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
# Ceiling used by the lightweight local-only upload path.
LOCAL_MAX_BYTES = 5 * 1024 * 1024


class ImageValidator:
    """Type allow-list and size ceiling for uploaded images."""

    def __init__(
        self,
        allowed_types: Optional[Iterable[str]] = None,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> None:
        self.allowed_types = tuple(t.lower() for t in (allowed_types or DEFAULT_ALLOWED_TYPES))
        self.max_bytes = max_bytes

    def validate(self, source: SourceImage) -> None:
        """Raise :class:`ValidationRejected` if the upload is not acceptable.

        Args:
            source: The uploaded image with its declared content type.

        Raises:
            ValidationRejected: Unsupported declared type or oversized body.
        """
        if source.content_type.lower() not in self.allowed_types:
            raise ValidationRejected(
                "Invalid file type. Please upload JPEG, PNG, WebP, or AVIF images."
            )
        if source.size > self.max_bytes:
            raise ValidationRejected(
                f"File size too large. Maximum size is {self._max_megabytes()}MB."
            )

    def is_valid(self, source: SourceImage) -> bool:
        try:
            self.validate(source)
        except ValidationRejected:
            return False
        return True

    def _max_megabytes(self) -> str:
        megabytes = self.max_bytes / (1024 * 1024)
        return f"{megabytes:g}"
