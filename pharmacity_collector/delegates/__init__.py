# pharmacity_collector/delegates/__init__.py

# This file makes the delegate classes directly available from the 'delegates' package.
# Instead of: from pharmacity_collector.delegates.web_scraper_delegate import WebScraperDelegate
# We can now use: from pharmacity_collector.delegates import WebScraperDelegate

from .search_delegate import SearchDelegate
from .web_scraper_delegate import WebScraperDelegate
from .downloader_delegate import DownloaderDelegate
from .file_manager_delegate import FileManagerDelegate
from .ocr_delegate import OCRSpaceDelegate, TesseractOCRDelegate
from .llm_delegate import GeminiDelegate
