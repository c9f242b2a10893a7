# pharmacity_collector/pipeline/localization.py
"""
Turns OCR text lines into a YOLO-style bounding box for the product in an image.

Product photos print the product name near the top of the box, so the box is
grown from the text that names the drug: a little above it, a lot below it.
Pixel coordinates are normalized against a canonical 1000x1000 canvas unless
the real image size is known and requested.
"""
import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from ..models import BoundingBox, DrugInfo, LocalizationResult, OCRResult, TextLine
from ..utils import read_image_size
from .enrichment import analyze_drug_name

logger = logging.getLogger(__name__)

CANONICAL_SIZE: Tuple[int, int] = (1000, 1000)
# Shorter tokens ("la", "mg") match almost any line.
MIN_TOKEN_LENGTH = 3
SIDE_PADDING_RATIO = 0.2
TOP_PADDING_WORD_HEIGHTS = 1.5
BOTTOM_PADDING_RATIO = 2.0
MIN_PRIORITY_LINES = 3


def drug_name_tokens(drug_name: Optional[str]) -> List[str]:
    if not drug_name:
        return []
    return [token for token in drug_name.lower().split() if len(token) >= MIN_TOKEN_LENGTH]


def find_matching_lines(lines: Sequence[TextLine], tokens: Sequence[str]) -> List[TextLine]:
    """Lines whose lowercased text contains any of the tokens."""
    if not tokens:
        return []
    matching = []
    for line in lines:
        if not line.words:
            continue
        line_text = line.text.lower()
        if any(token in line_text for token in tokens):
            matching.append(line)
    return matching


def box_from_lines(lines: Sequence[TextLine], image_size: Tuple[int, int] = CANONICAL_SIZE) -> BoundingBox:
    words = [word for line in lines for word in line.words]
    if not words:
        return BoundingBox.default()

    min_left = min(word.left for word in words)
    min_top = min(word.top for word in words)
    max_right = max(word.right for word in words)
    max_bottom = max(word.bottom for word in words)
    max_word_height = max(word.height for word in words)

    side_padding = (max_right - min_left) * SIDE_PADDING_RATIO
    top_padding = max_word_height * TOP_PADDING_WORD_HEIGHTS
    bottom_padding = (max_bottom - min_top) * BOTTOM_PADDING_RATIO

    padded_left = max(0, min_left - side_padding)
    padded_top = max(0, min_top - top_padding)
    padded_right = max_right + side_padding
    padded_bottom = max_bottom + bottom_padding

    image_width, image_height = image_size
    left = padded_left / image_width
    top = padded_top / image_height
    right = padded_right / image_width
    bottom = padded_bottom / image_height

    width = right - left
    height = bottom - top
    return BoundingBox.clamped(
        x_center=left + width / 2,
        y_center=top + height / 2,
        width=width,
        height=height,
    )


def box_from_all_lines(lines: Sequence[TextLine], image_size: Tuple[int, int] = CANONICAL_SIZE) -> BoundingBox:
    """Box around the top third of the text (at least three lines), where product names usually sit."""
    if not lines:
        return BoundingBox.default()
    ordered = sorted(lines, key=lambda line: line.top)
    count = max(MIN_PRIORITY_LINES, len(ordered) // 3)
    return box_from_lines(ordered[:count], image_size)


def determine_product_location(lines: Sequence[TextLine], drug_name: Optional[str],
                               image_size: Tuple[int, int] = CANONICAL_SIZE) -> BoundingBox:
    if not lines:
        logger.info("No OCR lines available, using default position")
        return BoundingBox.default()

    matching = find_matching_lines(lines, drug_name_tokens(drug_name))
    if matching:
        logger.info("Found %d lines matching drug name '%s'", len(matching), drug_name)
        return box_from_lines(matching, image_size)

    logger.info("No lines match '%s', using the topmost text", drug_name or "")
    return box_from_all_lines(lines, image_size)


class LocalizationEngine:
    """Runs download -> OCR -> drug-name analysis -> box inference for each image, one at a time."""
    def __init__(self, downloader, ocr, llm, temp_dir: Path, delay_seconds: float = 5.0,
                 use_llm: bool = True, use_actual_image_size: bool = False,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.downloader = downloader
        self.ocr = ocr
        self.llm = llm
        self.temp_dir = temp_dir
        self.delay_seconds = delay_seconds
        self.use_llm = use_llm and llm is not None
        self.use_actual_image_size = use_actual_image_size
        self._sleep = sleep

    def _image_size(self, ocr_result: OCRResult, image_path: Path) -> Tuple[int, int]:
        if not self.use_actual_image_size:
            return CANONICAL_SIZE
        if ocr_result.image_width and ocr_result.image_height:
            return ocr_result.image_width, ocr_result.image_height
        return read_image_size(image_path) or CANONICAL_SIZE

    async def _locate_one(self, index: int, url: str, product_name_hint: Optional[str]) -> LocalizationResult:
        image_path = await self.downloader.download_to_temp(url, self.temp_dir)
        try:
            ocr_result = await self.ocr.recognize(image_path)
            image_size = self._image_size(ocr_result, image_path)
        finally:
            image_path.unlink(missing_ok=True)

        lines = [] if ocr_result.errored else ocr_result.lines
        drug_info = DrugInfo.unknown()
        if self.use_llm and lines:
            drug_info = await analyze_drug_name(self.llm, ocr_result.text)

        location = determine_product_location(lines, drug_info.drug_name or product_name_hint, image_size)
        return LocalizationResult(
            image_index=index,
            url=url,
            location=location,
            drug_info=drug_info,
            success=True,
            ocr_error=ocr_result.error_message if ocr_result.errored else None,
            ocr_processing_ms=ocr_result.processing_time_ms,
        )

    async def locate(self, image_urls: Sequence[str], product_name_hint: Optional[str] = None) -> List[LocalizationResult]:
        """One result per image, in order. A failing image gets the default box and never stops the batch."""
        if isinstance(image_urls, str):
            image_urls = [image_urls]
        logger.info("Analyzing product location with OCR for %d images", len(image_urls))

        results: List[LocalizationResult] = []
        for i, url in enumerate(image_urls):
            logger.info("Processing image %d/%d: %s", i + 1, len(image_urls), url)
            try:
                result = await self._locate_one(i, url, product_name_hint)
            except Exception as e:
                logger.error("Error processing image %d with OCR: %s", i, e)
                result = LocalizationResult(image_index=i, url=url, success=False, error=str(e))
            results.append(result)

            if i < len(image_urls) - 1 and self.delay_seconds:
                logger.debug("Waiting %.1f seconds before processing next image...", self.delay_seconds)
                await self._sleep(self.delay_seconds)
        return results
