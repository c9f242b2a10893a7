"""
Tests for image downloads: skip-if-present, per-image failures and compression fallbacks.
"""

import httpx
import pytest
from PIL import Image

from pharmacity_collector.delegates import DownloaderDelegate
from pharmacity_collector.models import ImageOutcome
from pharmacity_collector.utils import compress_image, read_image_size

from conftest import jpeg_bytes


def image_server(requests):
    big_jpeg = jpeg_bytes(size=(400, 300))

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        if request.url.path.endswith("missing.jpg"):
            return httpx.Response(404)
        if request.url.path.endswith("broken.jpg"):
            return httpx.Response(200, content=b"definitely not an image")
        return httpx.Response(200, content=big_jpeg, headers={"Content-Type": "image/jpeg"})

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_fetch_and_store_downloads_skips_and_survives_failures(tmp_path):
    product_dir = tmp_path / "products" / "panadol"
    images_dir = product_dir / "images"
    images_dir.mkdir(parents=True)
    (images_dir / "image_0.jpg").write_bytes(b"already here")

    requests = []
    urls = [
        "https://cdn.example/existing.jpg",
        "https://cdn.example/missing.jpg",
        "https://cdn.example/good.jpg",
        "https://cdn.example/broken.jpg",
    ]
    async with DownloaderDelegate("test-agent", pacing_delay=0, transport=image_server(requests)) as downloader:
        outcomes = await downloader.fetch_and_store(urls, product_dir)

    assert outcomes == [ImageOutcome.SKIPPED, ImageOutcome.FAILED, ImageOutcome.DOWNLOADED, ImageOutcome.DOWNLOADED]
    assert "https://cdn.example/existing.jpg" not in requests
    assert (images_dir / "image_0.jpg").read_bytes() == b"already here"
    assert not (images_dir / "image_1.jpg").exists()
    assert read_image_size(images_dir / "image_2.jpg") == (400, 300)
    # Compression failed, so the original bytes stay.
    assert (images_dir / "image_3.jpg").read_bytes() == b"definitely not an image"
    assert sorted(p.name for p in images_dir.iterdir()) == ["image_0.jpg", "image_2.jpg", "image_3.jpg"]


@pytest.mark.asyncio
async def test_second_run_does_not_download_again(tmp_path):
    product_dir = tmp_path / "products" / "panadol"
    requests = []
    urls = ["https://cdn.example/a.jpg", "https://cdn.example/b.jpg"]

    async with DownloaderDelegate("test-agent", pacing_delay=0, transport=image_server(requests)) as downloader:
        first = await downloader.fetch_and_store(urls, product_dir)
        second = await downloader.fetch_and_store(urls, product_dir)

    assert first == [ImageOutcome.DOWNLOADED, ImageOutcome.DOWNLOADED]
    assert second == [ImageOutcome.SKIPPED, ImageOutcome.SKIPPED]
    assert len(requests) == 2


@pytest.mark.asyncio
async def test_download_to_temp(tmp_path):
    temp_dir = tmp_path / "temp"
    async with DownloaderDelegate("test-agent", pacing_delay=0, transport=image_server([])) as downloader:
        path = await downloader.download_to_temp("https://cdn.example/good.jpg", temp_dir)
        assert path.parent == temp_dir
        assert read_image_size(path) == (400, 300)

        with pytest.raises(RuntimeError):
            await downloader.download_to_temp("https://cdn.example/missing.jpg", temp_dir)

    assert list(temp_dir.iterdir()) == [path]


def test_compress_image_reencodes_as_jpeg(tmp_path):
    path = tmp_path / "image_0.jpg"
    Image.new("RGBA", (120, 80), (10, 200, 10, 128)).save(path, format="PNG")

    result = compress_image(path, quality=50)

    assert result.success
    assert result.original_kb > 0
    with Image.open(path) as image:
        assert image.format == "JPEG"
        assert image.size == (120, 80)
    assert not path.with_name("image_0.jpg.tmp").exists()


def test_compress_image_failure_keeps_original(tmp_path):
    path = tmp_path / "image_0.jpg"
    path.write_bytes(b"<html>403</html>")

    result = compress_image(path)

    assert not result.success
    assert result.error
    assert path.read_bytes() == b"<html>403</html>"
