# pharmacity_collector/delegates/ocr_delegate.py
import asyncio
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import pytesseract
from PIL import Image, ImageEnhance, ImageFilter

from ..errors import classify_http_error
from ..models import OCRResult, TextLine, Word

logger = logging.getLogger(__name__)


def parse_ocr_space_response(payload: Any) -> OCRResult:
    """Turns an OCR.space JSON body into an OCRResult. Unexpected shapes become an errored result."""
    if not isinstance(payload, dict):
        return OCRResult.failure(f"Unexpected OCR response type: {type(payload).__name__}")

    if payload.get("IsErroredOnProcessing"):
        message = payload.get("ErrorMessage") or "Unknown error"
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)
        return OCRResult(
            exit_code=payload.get("OCRExitCode"),
            errored=True,
            error_message=f"OCR Error: {message}",
            processing_time_ms=_as_float(payload.get("ProcessingTimeInMilliseconds")),
        )

    parsed_results = payload.get("ParsedResults") or []
    first = parsed_results[0] if parsed_results and isinstance(parsed_results[0], dict) else {}
    overlay = first.get("TextOverlay") or {}

    lines = []
    for raw_line in overlay.get("Lines") or []:
        words = []
        for raw_word in (raw_line or {}).get("Words") or []:
            try:
                words.append(Word(
                    text=str(raw_word.get("WordText", "")),
                    left=float(raw_word["Left"]),
                    top=float(raw_word["Top"]),
                    width=float(raw_word["Width"]),
                    height=float(raw_word["Height"]),
                ))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed OCR word: %s", raw_word)
        lines.append(TextLine(words=words))

    return OCRResult(
        text=first.get("ParsedText") or "",
        lines=lines,
        exit_code=payload.get("OCRExitCode"),
        errored=False,
        processing_time_ms=_as_float(payload.get("ProcessingTimeInMilliseconds")),
    )


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class OCRSpaceDelegate:
    """Sends images to the OCR.space API and returns word-level overlays."""
    def __init__(self, api_url: str, api_key: str, engine: int = 2, timeout: float = 60.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = api_url
        self.api_key = api_key
        self.engine = engine
        self.timeout = timeout
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self.client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        logger.debug("OCRSpaceDelegate httpx.AsyncClient initialized.")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            await self.client.aclose()
            logger.debug("OCRSpaceDelegate httpx.AsyncClient closed.")

    def _form_fields(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "OCREngine": str(self.engine),
            "language": "auto",
            "isTable": "false",
            "scale": "true",
            "isOverlayRequired": "true",
            "detectOrientation": "true",
            "isCreateSearchablePdf": "false",
        }

    async def recognize(self, image_path: Path) -> OCRResult:
        """Runs OCR on a local image. Never raises: failures come back as an errored OCRResult."""
        if not self.client:
            return OCRResult.failure("OCR client not initialized")

        logger.info("Performing OCR on: %s", image_path.name)
        try:
            with image_path.open("rb") as f:
                response = await self.client.post(
                    self.api_url,
                    data=self._form_fields(),
                    files={"file": (image_path.name, f, "image/jpeg")},
                )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError, OSError) as e:
            error = classify_http_error(e) if not isinstance(e, OSError) else e
            logger.error("OCR error: %s", error)
            return OCRResult.failure(str(error))

        result = parse_ocr_space_response(payload)
        if result.errored:
            logger.error("OCR completed with error: %s", result.error_message)
        else:
            logger.info("OCR completed: %d lines. Text (first 100 chars): %s",
                        len(result.lines), result.text[:100])
        return result


class TesseractOCRDelegate:
    """Local OCR with Tesseract, producing the same line/word overlay as the HTTP backend."""
    def __init__(self, primary_config: str):
        self.tesseract_config = primary_config

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    def _preprocess_image(self, image: Image.Image) -> Image.Image:
        gray = image.convert('L')
        contrast = ImageEnhance.Contrast(gray).enhance(1.5)
        return contrast.filter(ImageFilter.SHARPEN)

    def _recognize_sync(self, image_path: Path) -> OCRResult:
        with Image.open(image_path) as image:
            processed = self._preprocess_image(image)
            width, height = image.size
        data = pytesseract.image_to_data(processed, config=self.tesseract_config,
                                         output_type=pytesseract.Output.DICT)

        # Tesseract numbers lines within paragraphs within blocks.
        grouped: "OrderedDict[tuple, list]" = OrderedDict()
        for i, text in enumerate(data["text"]):
            if not text or not text.strip():
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            grouped.setdefault(key, []).append(Word(
                text=text.strip(),
                left=float(data["left"][i]),
                top=float(data["top"][i]),
                width=float(data["width"][i]),
                height=float(data["height"][i]),
            ))
        lines = [TextLine(words=words) for words in grouped.values()]
        return OCRResult(
            text="\n".join(line.text for line in lines),
            lines=lines,
            exit_code=1,
            image_width=width,
            image_height=height,
        )

    async def recognize(self, image_path: Path) -> OCRResult:
        try:
            result = await asyncio.to_thread(self._recognize_sync, image_path)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError) as e:
            logger.error("Tesseract OCR failed for %s: %s", image_path.name, e)
            return OCRResult.failure(str(e))
        logger.info("Tesseract OCR completed: %d lines.", len(result.lines))
        return result
