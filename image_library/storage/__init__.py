"""Storage backends: local filesystem and S3-compatible object storage."""

from image_library.storage.base import StorageBackend
from image_library.storage.local import LocalFilesystemBackend
from image_library.storage.progress import ProgressCallback, ProgressReporter
from image_library.storage.s3 import ObjectStoreBackend

__all__ = [
    "LocalFilesystemBackend",
    "ObjectStoreBackend",
    "ProgressCallback",
    "ProgressReporter",
    "StorageBackend",
]
