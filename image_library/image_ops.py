"""Image decoding, resizing and encoding.

This module wraps the Pillow operations used by the upload pipeline. A
single :class:`Transcoder` turns one uploaded image into up to three
renditions:

- ``webp``: the mandatory, widely supported variant.
- ``original``: a re-encode in the source's own family (JPEG or PNG) for
  consumers that cannot read WebP.
- ``avif``: an optional next-generation variant. Pillow builds without AVIF
  support (or any AVIF encoder error) simply omit it.

Everything here is synchronous and CPU-bound. The coordinator runs it in a
worker thread.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from io import BytesIO
from typing import Dict, List, Optional

from PIL import Image, ImageOps  # type: ignore[import]

from image_library.errors import DecodeFailed, EncodeFailed
from image_library.models import ImageMetadata, SourceImage, TranscodeOptions, VariantKind

logger = logging.getLogger(__name__)

WEBP_METHOD = 6  # slowest / smallest
AVIF_SPEED = 0  # slowest / smallest
AVIF_QUALITY_OFFSET = 5
PNG_COMPRESS_LEVEL = 9

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "avif": "image/avif",
}


@dataclass(frozen=True)
class ResizePlan:
    width: int
    height: int


@dataclass(frozen=True)
class EncodedVariant:
    """One encoded rendition of the working raster.

    Attributes:
        kind: Which rendition this is.
        data: Encoded bytes.
        extension: File extension (without dot) used for storage keys.
        quality: Nominal quality passed to the encoder.
        effort: Encoder effort setting (WebP ``method``, AVIF ``speed``,
            PNG ``compress_level``); ``None`` when the encoder has none.
    """

    kind: VariantKind
    data: bytes = field(repr=False)
    extension: str
    quality: int
    effort: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES[self.extension]


@dataclass(frozen=True)
class TranscodeResult:
    variants: Dict[VariantKind, EncodedVariant]
    metadata: ImageMetadata
    resize: Optional[ResizePlan] = None
    omitted: List[VariantKind] = field(default_factory=list)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def plan_resize(width: int, height: int, max_width: int, max_height: int) -> Optional[ResizePlan]:
    """Fit ``width`` x ``height`` inside the maxima, keeping the aspect ratio.

    Returns ``None`` when the image already fits. Never upscales.
    """
    if width <= max_width and height <= max_height:
        return None
    ratio = min(max_width / width, max_height / height)
    return ResizePlan(
        width=max(1, _round_half_up(width * ratio)),
        height=max(1, _round_half_up(height * ratio)),
    )


def _open_image(data: bytes) -> Image.Image:
    """Decode raw bytes with Pillow, honouring EXIF orientation."""
    if not data:
        raise DecodeFailed("Image data is empty.")
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
        raise DecodeFailed(f"Could not decode image: {exc}") from exc
    source_format = img.format
    img = ImageOps.exif_transpose(img)
    # exif_transpose returns a copy that drops the format attribute
    img.format = source_format
    return img


def _working_mode(img: Image.Image) -> Image.Image:
    if img.mode in ("RGB", "RGBA"):
        return img
    if img.mode in ("LA", "PA") or "transparency" in img.info:
        return img.convert("RGBA")
    return img.convert("RGB")


def _flatten(img: Image.Image) -> Image.Image:
    """Drop alpha onto a white background for formats without transparency."""
    if img.mode != "RGBA":
        return img.convert("RGB")
    background = Image.new("RGB", img.size, (255, 255, 255))
    background.paste(img, mask=img.getchannel("A"))
    return background


def _save(img: Image.Image, fmt: str, **params) -> bytes:
    buffer = BytesIO()
    img.save(buffer, format=fmt, **params)
    return buffer.getvalue()


class Transcoder:
    """Decode, resize and encode uploaded images."""

    def transcode(self, source: SourceImage, options: Optional[TranscodeOptions] = None) -> TranscodeResult:
        """Produce the optimized renditions of ``source``.

        Args:
            source: The uploaded image.
            options: Quality and size limits. Defaults apply when omitted.

        Returns:
            The encoded variants plus metadata of the final raster.

        Raises:
            DecodeFailed: The bytes are not a readable image.
            EncodeFailed: The mandatory WebP variant could not be encoded.
        """
        opts = options or TranscodeOptions()
        img = _open_image(source.data)
        source_format = (img.format or "").lower()

        plan = plan_resize(img.width, img.height, opts.max_width, opts.max_height)
        working = _working_mode(img)
        if plan is not None:
            working = working.resize((plan.width, plan.height), Image.LANCZOS)

        variants: Dict[VariantKind, EncodedVariant] = {}
        omitted: List[VariantKind] = []

        variants[VariantKind.WEBP] = self.encode_webp(working, opts.quality)

        try:
            variants[VariantKind.ORIGINAL] = self.encode_original(working, source_format, opts)
        except EncodeFailed as exc:
            logger.warning("Original re-encode failed for %s, skipping: %s", source.filename, exc)
            omitted.append(VariantKind.ORIGINAL)

        if opts.generate_avif:
            try:
                variants[VariantKind.AVIF] = self.encode_avif(
                    working, max(opts.quality - AVIF_QUALITY_OFFSET, 0)
                )
            except EncodeFailed as exc:
                logger.warning("AVIF generation failed for %s, skipping: %s", source.filename, exc)
                omitted.append(VariantKind.AVIF)

        metadata = ImageMetadata(
            width=working.width,
            height=working.height,
            format=source_format,
            quality=opts.quality,
        )
        return TranscodeResult(variants=variants, metadata=metadata, resize=plan, omitted=omitted)

    def probe(self, source: SourceImage) -> ImageMetadata:
        """Read dimensions and format from the header without a full decode."""
        if not source.data:
            raise DecodeFailed("Image data is empty.")
        try:
            with Image.open(BytesIO(source.data)) as img:
                return ImageMetadata(width=img.width, height=img.height, format=(img.format or "").lower())
        except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
            raise DecodeFailed(f"Could not decode image: {exc}") from exc

    def encode_webp(self, img: Image.Image, quality: int) -> EncodedVariant:
        try:
            data = _save(img, "WEBP", quality=quality, method=WEBP_METHOD)
        except (OSError, ValueError, KeyError) as exc:
            raise EncodeFailed(f"WebP encoding failed: {exc}", variant=VariantKind.WEBP.value) from exc
        return EncodedVariant(VariantKind.WEBP, data, "webp", quality, WEBP_METHOD)

    def encode_original(self, img: Image.Image, source_format: str, options: TranscodeOptions) -> EncodedVariant:
        """Re-encode in the source's family: PNG stays PNG, everything else becomes JPEG."""
        try:
            if source_format == "png":
                data = _save(img, "PNG", optimize=True, compress_level=PNG_COMPRESS_LEVEL)
                return EncodedVariant(VariantKind.ORIGINAL, data, "png", options.quality, PNG_COMPRESS_LEVEL)
            data = _save(
                _flatten(img),
                "JPEG",
                quality=options.quality,
                optimize=True,
                progressive=options.progressive,
            )
        except (OSError, ValueError, KeyError) as exc:
            raise EncodeFailed(f"Original re-encode failed: {exc}", variant=VariantKind.ORIGINAL.value) from exc
        return EncodedVariant(VariantKind.ORIGINAL, data, "jpg", options.quality)

    def encode_avif(self, img: Image.Image, quality: int) -> EncodedVariant:
        try:
            data = _save(img, "AVIF", quality=quality, speed=AVIF_SPEED)
        except (OSError, ValueError, KeyError) as exc:
            # KeyError: this Pillow build has no AVIF encoder
            raise EncodeFailed(f"AVIF encoding failed: {exc}", variant=VariantKind.AVIF.value) from exc
        return EncodedVariant(VariantKind.AVIF, data, "avif", quality, AVIF_SPEED)


def content_type_for(extension: str) -> str:
    return CONTENT_TYPES.get(extension.lower().lstrip("."), "image/jpeg")
