# pharmacity_collector/delegates/downloader_delegate.py
import asyncio
import os
import logging
import tempfile
from pathlib import Path
from typing import List, Optional

import httpx

from ..errors import classify_http_error
from ..models import ImageOutcome
from ..utils import compress_image

logger = logging.getLogger(__name__)


class DownloaderDelegate:
    """Handles downloading product images, both into the product store and to temp files for OCR."""
    def __init__(self, user_agent: str, timeout: float = 30.0, compression_enabled: bool = True,
                 compression_quality: int = 70, pacing_delay: float = 0.3,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.user_agent = user_agent
        self.timeout = timeout
        self.compression_enabled = compression_enabled
        self.compression_quality = compression_quality
        self.pacing_delay = pacing_delay
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self.client = httpx.AsyncClient(
            headers={"User-Agent": self.user_agent},
            follow_redirects=True,
            transport=self._transport,
        )
        logger.debug("DownloaderDelegate httpx.AsyncClient initialized.")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            await self.client.aclose()
            logger.debug("DownloaderDelegate httpx.AsyncClient closed.")

    async def download_file(self, url: str, destination: Path) -> bool:
        """
        Streams `url` into `destination`. Writes to a .part file first so an
        interrupted download never looks like a finished one.
        """
        if not self.client:
            logger.error("HTTP client not initialized. Cannot download %s.", url)
            return False

        part_path = destination.with_name(destination.name + ".part")
        try:
            async with self.client.stream("GET", url, timeout=self.timeout) as response:
                if response.status_code != 200:
                    logger.error("Failed to download image %s: HTTP %s", url, response.status_code)
                    return False
                with part_path.open("wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
            part_path.replace(destination)
            return True
        except (httpx.HTTPError, OSError) as e:
            error = classify_http_error(e) if isinstance(e, httpx.HTTPError) else e
            logger.error("Error downloading image %s: %s", url, error)
            return False
        finally:
            part_path.unlink(missing_ok=True)

    async def fetch_and_store(self, urls: List[str], product_dir: Path) -> List[ImageOutcome]:
        """
        Downloads each URL to product_dir/images/image_<i>.jpg.
        Files already on disk are skipped; new ones are compressed in place.
        """
        images_dir = product_dir / "images"
        images_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading %d images to %s", len(urls), images_dir)

        outcomes: List[ImageOutcome] = []
        total_original_kb = 0.0
        total_compressed_kb = 0.0
        for i, url in enumerate(urls):
            image_path = images_dir / f"image_{i}.jpg"
            if image_path.exists():
                logger.debug("Image already exists: %s", image_path.name)
                outcomes.append(ImageOutcome.SKIPPED)
            elif await self.download_file(url, image_path):
                outcomes.append(ImageOutcome.DOWNLOADED)
                if self.compression_enabled:
                    # A failed compression keeps the original download, which still counts.
                    result = await asyncio.to_thread(compress_image, image_path, self.compression_quality)
                    if result.success:
                        total_original_kb += result.original_kb
                        total_compressed_kb += result.compressed_kb
            else:
                outcomes.append(ImageOutcome.FAILED)

            if self.pacing_delay:
                await asyncio.sleep(self.pacing_delay)

        logger.info("Image download results: %d downloaded, %d skipped, %d failed",
                    outcomes.count(ImageOutcome.DOWNLOADED),
                    outcomes.count(ImageOutcome.SKIPPED),
                    outcomes.count(ImageOutcome.FAILED))
        if total_original_kb > 0:
            saved = total_original_kb - total_compressed_kb
            logger.info("Total space saved: %.2fKB (%.2f%% reduction)", saved, saved / total_original_kb * 100)
        return outcomes

    async def download_to_temp(self, url: str, temp_dir: Path) -> Path:
        """
        Downloads `url` to a fresh file in temp_dir and returns its path.
        The caller owns the file and must remove it. Raises on failure.
        """
        temp_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="ocr_", suffix=".jpg", dir=temp_dir)
        path = Path(name)
        os.close(fd)
        if not await self.download_file(url, path):
            path.unlink(missing_ok=True)
            raise RuntimeError(f"Could not download image for OCR: {url}")
        logger.debug("Image for OCR saved to %s", path)
        return path
