"""
Test Configuration
==================

Pytest fixtures and helpers for the image library tests. Images are
generated in memory with Pillow; storage goes to ``tmp_path``.
"""

import io
import os
import tempfile

import pytest
from PIL import Image

# main.py builds its module-level app on import; keep its local root out of
# the working tree.
os.environ.setdefault("IMAGE_LIBRARY_DIR", tempfile.mkdtemp(prefix="image_library_"))

from image_library.coordinator import UploadCoordinator  # noqa: E402
from image_library.models import SourceImage, TranscodeOptions  # noqa: E402
from image_library.storage import LocalFilesystemBackend  # noqa: E402


def make_image_bytes(fmt="JPEG", size=(200, 150), color=(200, 60, 40), mode="RGB", **save_kwargs) -> bytes:
    """Encode a solid-colour image of the given size and format."""
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


def make_noise_jpeg(size, quality=95) -> bytes:
    """A hard-to-compress JPEG, so re-encodes are measurably smaller."""
    img = Image.effect_noise(size, 64).convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


class FailingBackend(LocalFilesystemBackend):
    """Local backend whose writes fail for the given extensions."""

    def __init__(self, root, fail_extensions=(), fail_times=None, **kwargs):
        super().__init__(root, **kwargs)
        self.fail_extensions = tuple(fail_extensions)
        self.fail_times = fail_times
        self.attempts = 0

    async def _write(self, key, data, content_type, reporter):
        if key.endswith(self.fail_extensions):
            self.attempts += 1
            if self.fail_times is None or self.attempts <= self.fail_times:
                raise OSError(f"simulated write failure for {key}")
        await super()._write(key, data, content_type, reporter)


@pytest.fixture
def storage_root(tmp_path):
    root = tmp_path / "storage"
    root.mkdir()
    return root


@pytest.fixture
def local_backend(storage_root):
    return LocalFilesystemBackend(str(storage_root), retry_backoff=0)


@pytest.fixture
def fast_options():
    """Default pipeline minus AVIF, which is slow at maximum effort."""
    return TranscodeOptions(generate_avif=False)


@pytest.fixture
def coordinator(local_backend, fast_options):
    return UploadCoordinator([local_backend], default_options=fast_options)


@pytest.fixture
def jpeg_source():
    return SourceImage(data=make_image_bytes("JPEG", (800, 600)), content_type="image/jpeg", filename="Chocolate Cake.jpg")


@pytest.fixture
def png_source():
    return SourceImage(data=make_image_bytes("PNG", (200, 150)), content_type="image/png", filename="icon.png")
