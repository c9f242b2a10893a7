# pharmacity_collector/utils/image_compression.py
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


@dataclass
class CompressionResult:
    success: bool
    original_kb: float = 0.0
    compressed_kb: float = 0.0
    error: Optional[str] = None

    @property
    def reduction_percent(self) -> float:
        if not self.original_kb:
            return 0.0
        return (self.original_kb - self.compressed_kb) / self.original_kb * 100


def compress_image(path: Path, quality: int = 70) -> CompressionResult:
    """
    Re-encodes `path` as an optimized JPEG in place.
    The new file is written next to the original and only swapped in once it is complete,
    so a failure leaves the downloaded file untouched.
    """
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        original_kb = path.stat().st_size / 1024
        with Image.open(path) as image:
            image.convert("RGB").save(tmp_path, format="JPEG", quality=quality, optimize=True, progressive=True)
        tmp_path.replace(path)
        compressed_kb = path.stat().st_size / 1024
    except (OSError, UnidentifiedImageError, ValueError) as e:
        logger.error("Error compressing image %s: %s", path.name, e)
        tmp_path.unlink(missing_ok=True)
        return CompressionResult(success=False, error=str(e))

    result = CompressionResult(success=True, original_kb=original_kb, compressed_kb=compressed_kb)
    logger.debug("Compressed %s (%.2fKB -> %.2fKB, %.2f%% reduction)",
                 path.name, original_kb, compressed_kb, result.reduction_percent)
    return result


def read_image_size(path: Path) -> Optional[tuple]:
    """(width, height) of an image file, or None if it cannot be read."""
    try:
        with Image.open(path) as image:
            return image.size
    except (OSError, UnidentifiedImageError) as e:
        logger.debug("Could not read image size for %s: %s", path, e)
        return None
