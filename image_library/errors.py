"""Typed errors raised by the image library.

Every failure the upload pipeline can surface derives from
:class:`ImageLibraryError` and carries an :class:`ErrorKind` tag so that
callers (the HTTP layer, batch ingestion) can map it to a response without
inspecting messages.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION_REJECTED = "validation_rejected"
    DECODE_FAILED = "decode_failed"
    ENCODE_FAILED = "encode_failed"
    STORE_FAILED = "store_failed"
    MIRROR_FAILED = "mirror_failed"


class ImageLibraryError(Exception):
    """Base class for image library errors."""

    kind: ErrorKind

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.reason, "kind": self.kind.value}


class ValidationRejected(ImageLibraryError):
    """Declared type or size is not acceptable. Never retried."""

    kind = ErrorKind.VALIDATION_REJECTED


class DecodeFailed(ImageLibraryError):
    """The source bytes are not a decodable image."""

    kind = ErrorKind.DECODE_FAILED


class EncodeFailed(ImageLibraryError):
    """A single variant could not be encoded."""

    kind = ErrorKind.ENCODE_FAILED

    def __init__(self, reason: str, variant: Optional[str] = None) -> None:
        super().__init__(reason)
        self.variant = variant


class StoreFailed(ImageLibraryError):
    """A backend write failed after all attempts."""

    kind = ErrorKind.STORE_FAILED

    def __init__(self, reason: str, key: Optional[str] = None, backend: Optional[str] = None) -> None:
        super().__init__(reason)
        self.key = key
        self.backend = backend


class MirrorFailed(ImageLibraryError):
    """A best-effort copy to a secondary root failed. Logged, never raised to callers."""

    kind = ErrorKind.MIRROR_FAILED
