# pharmacity_collector/main.py
import logging
from contextlib import AsyncExitStack
from typing import List

from . import config as settings
from .config import CollectorConfig
from .delegates import (
    DownloaderDelegate,
    FileManagerDelegate,
    GeminiDelegate,
    OCRSpaceDelegate,
    SearchDelegate,
    TesseractOCRDelegate,
    WebScraperDelegate,
)
from .pipeline import Collaborators, CollectionRun, LocalizationEngine, run_collection

logger = logging.getLogger(__name__)


def build_ocr_delegate(config: CollectorConfig):
    if config.ocr_backend == "tesseract":
        logger.info("Using local Tesseract OCR.")
        return TesseractOCRDelegate(primary_config=settings.TESSERACT_PRIMARY_CONFIG)
    return OCRSpaceDelegate(
        api_url=settings.OCR_SPACE_URL,
        api_key=config.ocr_space_api_key,
        engine=settings.OCR_SPACE_ENGINE,
    )


async def main(steps_to_run: List[int], config: CollectorConfig, search_only: bool = False) -> CollectionRun:
    """Wires the delegates together and runs the requested steps."""
    file_manager = FileManagerDelegate(base_path=config.output_dir, temp_path=config.temp_dir)
    file_manager.clean_temp()

    # The browser is only needed when products are actually scraped.
    needs_browser = 2 in steps_to_run and not search_only

    async with AsyncExitStack() as stack:
        search = await stack.enter_async_context(
            SearchDelegate(base_url=settings.API_BASE_URL, user_agent=settings.USER_AGENT)
        )
        downloader = await stack.enter_async_context(
            DownloaderDelegate(
                user_agent=settings.USER_AGENT,
                timeout=settings.IMAGE_TIMEOUT,
                compression_enabled=config.compression_enabled,
                compression_quality=config.compression_quality,
                pacing_delay=config.image_delay_seconds,
            )
        )
        llm = await stack.enter_async_context(
            GeminiDelegate(
                api_key=config.gemini_api_key,
                model=config.gemini_model,
                max_retries=config.llm_max_retries,
                initial_backoff=config.llm_initial_backoff,
            )
        )
        ocr = await stack.enter_async_context(build_ocr_delegate(config))

        scraper = None
        if needs_browser:
            scraper = await stack.enter_async_context(
                WebScraperDelegate(
                    base_url=settings.BASE_URL,
                    user_agent=settings.USER_AGENT,
                    viewport=settings.VIEWPORT,
                    navigation_timeout=settings.REQUEST_TIMEOUT,
                    heading_timeout=settings.HEADING_TIMEOUT,
                )
            )

        localizer = LocalizationEngine(
            downloader=downloader,
            ocr=ocr,
            llm=llm,
            temp_dir=config.temp_dir,
            delay_seconds=config.ocr_delay_seconds,
            use_llm=config.use_llm_drug_analysis,
            use_actual_image_size=config.use_actual_image_size,
        )
        collaborators = Collaborators(
            search=search,
            scraper=scraper,
            downloader=downloader,
            localizer=localizer,
            llm=llm,
        )
        run = await run_collection(steps_to_run, collaborators, file_manager, config, search_only=search_only)

    logger.info("Main pipeline process finished.")
    return run
