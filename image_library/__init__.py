"""Image library: validated, optimized image uploads to local or object storage.

The upload pipeline is Validator -> Transcoder -> StorageBackend(s),
orchestrated by :class:`~image_library.coordinator.UploadCoordinator`.
See individual modules for details.
"""

from image_library.coordinator import UploadCoordinator
from image_library.errors import (
    DecodeFailed,
    EncodeFailed,
    ErrorKind,
    ImageLibraryError,
    MirrorFailed,
    StoreFailed,
    ValidationRejected,
)
from image_library.image_ops import Transcoder, plan_resize
from image_library.models import (
    ImageMetadata,
    SavingsReport,
    SourceImage,
    StoredAsset,
    TranscodeOptions,
    UploadProgress,
    UploadResult,
    VariantKind,
)
from image_library.responsive import ResponsiveSetGenerator
from image_library.savings import calculate_savings
from image_library.storage import LocalFilesystemBackend, ObjectStoreBackend, StorageBackend
from image_library.validation import ImageValidator

__version__ = "0.1.0"

__all__ = [
    "DecodeFailed",
    "EncodeFailed",
    "ErrorKind",
    "ImageLibraryError",
    "ImageMetadata",
    "ImageValidator",
    "LocalFilesystemBackend",
    "MirrorFailed",
    "ObjectStoreBackend",
    "ResponsiveSetGenerator",
    "SavingsReport",
    "SourceImage",
    "StorageBackend",
    "StoreFailed",
    "StoredAsset",
    "TranscodeOptions",
    "Transcoder",
    "UploadCoordinator",
    "UploadProgress",
    "UploadResult",
    "ValidationRejected",
    "VariantKind",
    "calculate_savings",
    "plan_resize",
]
