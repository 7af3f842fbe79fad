"""Pydantic models and data schemas for the image library.

These models describe what flows through one ingestion call: the uploaded
source, the options used to transcode it, the assets written to storage and
the aggregated result returned to the caller. All of them are immutable once
built; nothing here outlives a single request.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class VariantKind(str, Enum):
    """Format tag of an encoded rendition."""

    ORIGINAL = "original"
    WEBP = "webp"
    AVIF = "avif"

    @property
    def mandatory(self) -> bool:
        return self is VariantKind.WEBP


class SourceImage(BaseModel):
    """An uploaded image as received from the caller.

    Attributes:
        data: Raw bytes exactly as uploaded.
        content_type: MIME type declared by the client. It is not sniffed.
        filename: Original filename, used to derive storage keys.
    """

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    content_type: str
    filename: str = "image"

    @property
    def size(self) -> int:
        return len(self.data)


class TranscodeOptions(BaseModel):
    """Knobs for one transcode. Defaults match the full optimization pipeline."""

    model_config = ConfigDict(frozen=True)

    quality: int = Field(default=85, ge=0, le=100, description="Target quality (0-100)")
    generate_avif: bool = Field(default=True, description="Attempt the AVIF variant")
    max_width: int = Field(default=1920, gt=0, description="Maximum output width")
    max_height: int = Field(default=1080, gt=0, description="Maximum output height")
    progressive: bool = Field(default=True, description="Progressive JPEG output")


class ImageMetadata(BaseModel):
    """Dimensions and detected format of the final (possibly resized) raster."""

    model_config = ConfigDict(frozen=True)

    width: int
    height: int
    format: str
    quality: Optional[int] = None


class StoredAsset(BaseModel):
    """The durable, URL-addressable result of one write to one backend."""

    model_config = ConfigDict(frozen=True)

    key: str
    url: str
    size: int
    content_type: str
    backend: str
    variant: Optional[VariantKind] = None


class SavingsReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    original_size: int
    variant_size: int
    absolute_saving: int
    percentage_saving: float


class UploadResult(BaseModel):
    """Everything a caller gets back from a successful ingestion.

    ``omitted`` lists variants that were attempted or requested but are not
    present in ``assets`` (for example AVIF when the encoder is unavailable).
    """

    model_config = ConfigDict(frozen=True)

    assets: List[StoredAsset]
    metadata: ImageMetadata
    original_size: int
    savings: Dict[VariantKind, SavingsReport] = Field(default_factory=dict)
    omitted: List[VariantKind] = Field(default_factory=list)

    def assets_for(self, variant: VariantKind) -> List[StoredAsset]:
        return [asset for asset in self.assets if asset.variant == variant]

    def asset(self, variant: VariantKind, backend: Optional[str] = None) -> Optional[StoredAsset]:
        for candidate in self.assets_for(variant):
            if backend is None or candidate.backend == backend:
                return candidate
        return None

    @property
    def url(self) -> str:
        """Public URL of the WebP variant on the first backend.

        Unoptimized uploads carry no WebP variant; their first asset is used.
        """
        primary = self.asset(VariantKind.WEBP) or (self.assets[0] if self.assets else None)
        if primary is None:
            raise LookupError("Upload result has no stored assets")
        return primary.url

    @property
    def partial(self) -> bool:
        return bool(self.omitted)


class UploadProgress(BaseModel):
    """One progress event emitted while a backend write is in flight."""

    model_config = ConfigDict(frozen=True)

    bytes_transferred: int
    total_bytes: int
    state: Literal["running", "success", "error"] = "running"

    @property
    def progress(self) -> float:
        if self.total_bytes <= 0:
            return 100.0
        return self.bytes_transferred / self.total_bytes * 100
