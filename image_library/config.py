"""Configuration for the image library.

Settings are read once from environment variables at process start and
never reloaded. ``build_backends`` turns them into explicitly constructed
storage backends; nothing in the library keeps a module-level client.

Environment variables:
    STORAGE_BACKEND: Comma-separated list of 'local' and/or 's3'
        (default 'local'). The first entry is the primary backend.
    IMAGE_LIBRARY_DIR: Root directory for local storage (default
        './image_library').
    IMAGE_LIBRARY_URL: URL prefix the local root is served under (default
        '/image_library').
    IMAGE_LIBRARY_MIRRORS: Extra local roots, separated by os.pathsep, that
        receive a best-effort copy of every write.
    DO_SPACES_ENDPOINT, DO_SPACES_REGION, DO_SPACES_KEY, DO_SPACES_SECRET,
    DO_SPACES_BUCKET, DO_SPACES_CDN_ENDPOINT, DO_SPACES_PROVIDER_HOST:
        S3-compatible object storage settings.
    IMAGE_QUALITY, IMAGE_MAX_WIDTH, IMAGE_MAX_HEIGHT, IMAGE_GENERATE_AVIF:
        Default transcode options.
    IMAGE_ALLOWED_TYPES: Comma-separated MIME allow-list.
    IMAGE_MAX_UPLOAD_BYTES: Upload size ceiling.
    IMAGE_MAX_CONCURRENCY: Cap on concurrent ingestions in batch calls.
        Unbounded for local-only setups, 4 when object storage is used.
    REDIS_HOST, REDIS_PORT: Job queue for deferred responsive sets.
    IMAGE_LIBRARY_LOG_LEVEL, IMAGE_LIBRARY_LOG_FORMAT: Logging.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional

from pydantic import BaseModel, Field

from image_library.coordinator import UploadCoordinator
from image_library.models import TranscodeOptions
from image_library.storage import LocalFilesystemBackend, ObjectStoreBackend, StorageBackend
from image_library.validation import DEFAULT_ALLOWED_TYPES, DEFAULT_MAX_BYTES, ImageValidator

logger = logging.getLogger(__name__)

REMOTE_DEFAULT_CONCURRENCY = 4


class LocalStorageSettings(BaseModel):
    root: str = Field(default="./image_library", description="Local storage root")
    base_url: str = Field(default="/image_library", description="URL prefix for the static mount")
    mirrors: List[str] = Field(default_factory=list, description="Best-effort mirror roots")


class ObjectStoreSettings(BaseModel):
    endpoint_url: Optional[str] = None
    region: str = "sfo3"
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    bucket: str = ""
    cdn_endpoint: Optional[str] = None
    provider_host: str = "digitaloceanspaces.com"


class UploadSettings(BaseModel):
    allowed_types: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_TYPES))
    max_bytes: int = Field(default=DEFAULT_MAX_BYTES, gt=0)
    max_concurrency: Optional[int] = Field(default=None, ge=1)


class QueueSettings(BaseModel):
    redis_host: str = "redis"
    redis_port: int = 6379
    queue_name: str = "images"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    backends: List[str] = Field(default_factory=lambda: ["local"])
    local: LocalStorageSettings = Field(default_factory=LocalStorageSettings)
    object_store: ObjectStoreSettings = Field(default_factory=ObjectStoreSettings)
    transcode: TranscodeOptions = Field(default_factory=TranscodeOptions)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def uses_object_store(self) -> bool:
        return "s3" in self.backends

    @property
    def max_concurrency(self) -> Optional[int]:
        if self.upload.max_concurrency is not None:
            return self.upload.max_concurrency
        return REMOTE_DEFAULT_CONCURRENCY if self.uses_object_store else None


def _split(value: str, sep: str = ",") -> List[str]:
    return [part.strip() for part in value.split(sep) if part.strip()]


def load_settings() -> Settings:
    """Build settings from the environment. Unset variables keep their defaults."""
    data: dict = {}
    env = os.environ

    if backends := env.get("STORAGE_BACKEND"):
        data["backends"] = [b.lower() for b in _split(backends)]

    local: dict = {}
    if root := env.get("IMAGE_LIBRARY_DIR"):
        local["root"] = root
    if base_url := env.get("IMAGE_LIBRARY_URL"):
        local["base_url"] = base_url
    if mirrors := env.get("IMAGE_LIBRARY_MIRRORS"):
        local["mirrors"] = _split(mirrors, os.pathsep)
    data["local"] = local

    data["object_store"] = {
        key: value
        for key, value in {
            "endpoint_url": env.get("DO_SPACES_ENDPOINT"),
            "region": env.get("DO_SPACES_REGION"),
            "access_key_id": env.get("DO_SPACES_KEY"),
            "secret_access_key": env.get("DO_SPACES_SECRET"),
            "bucket": env.get("DO_SPACES_BUCKET"),
            "cdn_endpoint": env.get("DO_SPACES_CDN_ENDPOINT"),
            "provider_host": env.get("DO_SPACES_PROVIDER_HOST"),
        }.items()
        if value
    }

    transcode: dict = {}
    if quality := env.get("IMAGE_QUALITY"):
        transcode["quality"] = int(quality)
    if max_width := env.get("IMAGE_MAX_WIDTH"):
        transcode["max_width"] = int(max_width)
    if max_height := env.get("IMAGE_MAX_HEIGHT"):
        transcode["max_height"] = int(max_height)
    if avif := env.get("IMAGE_GENERATE_AVIF"):
        transcode["generate_avif"] = avif.lower() not in ("0", "false", "no")
    data["transcode"] = transcode

    upload: dict = {}
    if allowed := env.get("IMAGE_ALLOWED_TYPES"):
        upload["allowed_types"] = _split(allowed)
    if max_bytes := env.get("IMAGE_MAX_UPLOAD_BYTES"):
        upload["max_bytes"] = int(max_bytes)
    if concurrency := env.get("IMAGE_MAX_CONCURRENCY"):
        upload["max_concurrency"] = int(concurrency)
    data["upload"] = upload

    data["queue"] = {}
    if redis_host := env.get("REDIS_HOST"):
        data["queue"]["redis_host"] = redis_host
    if redis_port := env.get("REDIS_PORT"):
        data["queue"]["redis_port"] = int(redis_port)

    data["logging"] = {}
    if level := env.get("IMAGE_LIBRARY_LOG_LEVEL"):
        data["logging"]["level"] = level
    if fmt := env.get("IMAGE_LIBRARY_LOG_FORMAT"):
        data["logging"]["format"] = fmt

    return Settings.model_validate(data)


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def build_backends(settings: Settings) -> List[StorageBackend]:
    """Instantiate the configured backends, primary first.

    Raises:
        ValueError: An unknown backend name, or 's3' without a bucket.
    """
    backends: List[StorageBackend] = []
    for name in settings.backends:
        if name == "local":
            backends.append(
                LocalFilesystemBackend(
                    root=settings.local.root,
                    base_url=settings.local.base_url,
                    mirrors=settings.local.mirrors,
                )
            )
        elif name == "s3":
            store = settings.object_store
            if not store.bucket:
                raise ValueError("DO_SPACES_BUCKET must be set when STORAGE_BACKEND includes 's3'")
            backends.append(
                ObjectStoreBackend(
                    bucket=store.bucket,
                    region=store.region,
                    endpoint_url=store.endpoint_url,
                    aws_access_key_id=store.access_key_id,
                    aws_secret_access_key=store.secret_access_key,
                    cdn_endpoint=store.cdn_endpoint,
                    provider_host=store.provider_host,
                )
            )
        else:
            raise ValueError(f"Unknown storage backend {name!r}; expected 'local' or 's3'")
    return backends


def build_validator(settings: Settings) -> ImageValidator:
    return ImageValidator(allowed_types=settings.upload.allowed_types, max_bytes=settings.upload.max_bytes)


def build_coordinator(settings: Settings) -> UploadCoordinator:
    return UploadCoordinator(
        backends=build_backends(settings),
        validator=build_validator(settings),
        default_options=settings.transcode,
        max_concurrency=settings.max_concurrency,
    )
