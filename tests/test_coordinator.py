"""Tests for UploadCoordinator."""

import asyncio
import io

import pytest
from PIL import Image

from conftest import FailingBackend, make_image_bytes, make_noise_jpeg
from image_library.coordinator import UploadCoordinator, gather_bounded
from image_library.errors import DecodeFailed, EncodeFailed, StoreFailed, ValidationRejected
from image_library.image_ops import Transcoder
from image_library.models import SourceImage, TranscodeOptions, VariantKind
from image_library.storage import LocalFilesystemBackend


def _stored_files(root):
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


class TestIngest:

    def test_ingest_stores_webp_and_original(self, coordinator, jpeg_source, storage_root):
        result = asyncio.run(coordinator.ingest(jpeg_source))

        assert {a.variant for a in result.assets} == {VariantKind.WEBP, VariantKind.ORIGINAL}
        assert result.omitted == []
        assert result.partial is False
        assert result.original_size == jpeg_source.size
        assert (result.metadata.width, result.metadata.height) == (800, 600)

        webp = result.asset(VariantKind.WEBP)
        assert webp.key.startswith("pictures/chocolate-cake-")
        assert webp.key.endswith(".webp")
        assert result.url == webp.url == f"/image_library/{webp.key}"
        assert (storage_root / webp.key).read_bytes()[:4] == b"RIFF"

        # Variants of one upload share a base name.
        original = result.asset(VariantKind.ORIGINAL)
        assert original.key.rsplit(".", 1)[0] == webp.key.rsplit(".", 1)[0]
        assert set(result.savings) == {VariantKind.WEBP, VariantKind.ORIGINAL}

    def test_large_photo_is_resized_and_saves_bytes(self, coordinator, storage_root):
        data = make_noise_jpeg((4000, 3000))
        source = SourceImage(data=data, content_type="image/jpeg", filename="DSC_0001.JPG")

        result = asyncio.run(coordinator.ingest(source, folder="blog"))

        assert (result.metadata.width, result.metadata.height) == (1440, 1080)
        assert len(result.assets) in (2, 3)
        webp = result.asset(VariantKind.WEBP)
        assert webp.key.startswith("blog/dsc-0001-")
        assert result.savings[VariantKind.WEBP].percentage_saving > 0
        assert Image.open(io.BytesIO((storage_root / webp.key).read_bytes())).size == (1440, 1080)

    def test_spoofed_upload_writes_nothing(self, coordinator, storage_root):
        source = SourceImage(data=b"just some text", content_type="image/jpeg", filename="evil.jpg")

        with pytest.raises(DecodeFailed):
            asyncio.run(coordinator.ingest(source))

        assert _stored_files(storage_root) == []

    def test_rejected_type_writes_nothing(self, coordinator, storage_root):
        source = SourceImage(data=make_image_bytes("GIF", (10, 10)), content_type="image/gif", filename="a.gif")

        with pytest.raises(ValidationRejected):
            asyncio.run(coordinator.ingest(source))

        assert _stored_files(storage_root) == []

    def test_avif_encode_failure_is_partial(self, coordinator, jpeg_source, monkeypatch):
        def broken(self, img, quality):
            raise EncodeFailed("encoder unavailable", variant="avif")

        monkeypatch.setattr(Transcoder, "encode_avif", broken)
        result = asyncio.run(coordinator.ingest(jpeg_source, TranscodeOptions(generate_avif=True)))

        assert result.omitted == [VariantKind.AVIF]
        assert result.partial is True
        assert result.assets_for(VariantKind.AVIF) == []
        assert VariantKind.AVIF not in result.savings

    def test_webp_store_failure_is_fatal(self, storage_root, fast_options, jpeg_source):
        backend = FailingBackend(str(storage_root), fail_extensions=(".webp",), retry_backoff=0)
        coordinator = UploadCoordinator([backend], default_options=fast_options)

        with pytest.raises(StoreFailed):
            asyncio.run(coordinator.ingest(jpeg_source))

        # initial attempt plus one retry
        assert backend.attempts == 2

    def test_webp_store_recovers_on_retry(self, storage_root, fast_options, jpeg_source):
        backend = FailingBackend(str(storage_root), fail_extensions=(".webp",), fail_times=1, retry_backoff=0)
        coordinator = UploadCoordinator([backend], default_options=fast_options)

        result = asyncio.run(coordinator.ingest(jpeg_source))

        assert result.assets_for(VariantKind.WEBP)
        assert result.partial is False

    def test_optional_store_failure_is_omitted(self, storage_root, fast_options, jpeg_source):
        backend = FailingBackend(str(storage_root), fail_extensions=(".jpg",), retry_backoff=0)
        coordinator = UploadCoordinator([backend], default_options=fast_options)

        result = asyncio.run(coordinator.ingest(jpeg_source))

        assert [a.variant for a in result.assets] == [VariantKind.WEBP]
        assert result.omitted == [VariantKind.ORIGINAL]
        assert set(result.savings) == {VariantKind.WEBP}
        # optional variants are not retried
        assert backend.attempts == 1

    def test_non_required_backend_failure_is_tolerated(self, local_backend, tmp_path, fast_options, jpeg_source):
        flaky = FailingBackend(str(tmp_path / "cdn"), fail_extensions=(".webp",), name="cdn", required=False, retry_backoff=0)
        coordinator = UploadCoordinator([local_backend, flaky], default_options=fast_options)

        result = asyncio.run(coordinator.ingest(jpeg_source))

        assert [a.backend for a in result.assets_for(VariantKind.WEBP)] == ["local"]
        assert {a.backend for a in result.assets_for(VariantKind.ORIGINAL)} == {"local", "cdn"}
        assert result.omitted == []
        assert result.asset(VariantKind.ORIGINAL, backend="cdn").url.startswith("/image_library/")

    def test_webp_lost_on_every_backend_is_fatal(self, storage_root, fast_options, jpeg_source):
        flaky = FailingBackend(str(storage_root), fail_extensions=(".webp",), required=False, retry_backoff=0)
        coordinator = UploadCoordinator([flaky], default_options=fast_options)

        with pytest.raises(StoreFailed):
            asyncio.run(coordinator.ingest(jpeg_source))

    def test_progress_per_key(self, coordinator, jpeg_source):
        events = {}

        result = asyncio.run(coordinator.ingest(jpeg_source, progress=lambda key, e: events.setdefault(key, []).append(e)))

        assert set(events) == {a.key for a in result.assets}
        for key, seen in events.items():
            assert seen[0].bytes_transferred == 0
            assert seen[-1].state == "success"
            assert seen[-1].bytes_transferred == seen[-1].total_bytes
            transferred = [e.bytes_transferred for e in seen]
            assert transferred == sorted(transferred)


class TestIngestMany:

    def test_results_align_with_inputs(self, local_backend, fast_options, jpeg_source, png_source):
        coordinator = UploadCoordinator([local_backend], default_options=fast_options, max_concurrency=2)
        bad = SourceImage(data=b"%PDF-1.4", content_type="application/pdf", filename="menu.pdf")
        events = []

        results = asyncio.run(
            coordinator.ingest_many([jpeg_source, bad, png_source], progress=lambda i, key, e: events.append(i))
        )

        assert len(results) == 3
        assert results[0].asset(VariantKind.WEBP).key.startswith("pictures/chocolate-cake-")
        assert isinstance(results[1], ValidationRejected)
        assert results[2].asset(VariantKind.ORIGINAL).key.endswith(".png")
        assert set(events) == {0, 2}

    def test_keys_never_collide(self, coordinator, png_source):
        results = asyncio.run(coordinator.ingest_many([png_source] * 5))

        keys = [a.key for r in results for a in r.assets]
        assert len(keys) == len(set(keys)) == 10


class TestUploadOriginal:

    def test_stores_bytes_unchanged(self, coordinator, png_source, storage_root):
        result = asyncio.run(coordinator.upload_original(png_source, folder="raw"))

        (asset,) = result.assets
        assert asset.variant is VariantKind.ORIGINAL
        assert asset.key.startswith("raw/icon-") and asset.key.endswith(".png")
        assert asset.content_type == "image/png"
        assert (storage_root / asset.key).read_bytes() == png_source.data
        assert (result.metadata.width, result.metadata.height) == (200, 150)
        assert result.savings == {}

    def test_unknown_extension_uses_decoded_format(self, coordinator, storage_root):
        data = make_image_bytes("PNG", (40, 30))
        source = SourceImage(data=data, content_type="image/png", filename="photo.txt")

        result = asyncio.run(coordinator.upload_original(source))

        (asset,) = result.assets
        assert asset.key.startswith("pictures/photo-") and asset.key.endswith(".png")
        assert asset.content_type == "image/png"
        assert (storage_root / asset.key).read_bytes() == data

    def test_still_rejects_non_images(self, coordinator):
        source = SourceImage(data=b"not an image", content_type="image/png", filename="x.png")
        with pytest.raises(DecodeFailed):
            asyncio.run(coordinator.upload_original(source))


def test_delete_reports_per_backend(coordinator, jpeg_source):
    async def run():
        result = await coordinator.ingest(jpeg_source)
        key = "/" + result.asset(VariantKind.WEBP).key
        return await coordinator.delete(key), await coordinator.delete(key)

    first, second = asyncio.run(run())
    assert first == {"local": True}
    assert second == {"local": False}


def test_gather_bounded_limits_concurrency():
    running = 0
    peak = 0

    async def task(i):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return i

    results = asyncio.run(gather_bounded((task(i) for i in range(6)), limit=2))

    assert results == list(range(6))
    assert peak == 2


def test_coordinator_requires_a_backend():
    with pytest.raises(ValueError):
        UploadCoordinator([])


def test_backend_override(tmp_path, jpeg_source, fast_options):
    primary = LocalFilesystemBackend(str(tmp_path / "a"), name="a")
    secondary = LocalFilesystemBackend(str(tmp_path / "b"), name="b")
    coordinator = UploadCoordinator([primary, secondary], default_options=fast_options)

    result = asyncio.run(coordinator.ingest(jpeg_source, backends=[secondary]))

    assert {a.backend for a in result.assets} == {"b"}
    assert not (tmp_path / "a").exists()
