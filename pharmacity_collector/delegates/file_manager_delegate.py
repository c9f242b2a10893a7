# pharmacity_collector/delegates/file_manager_delegate.py
import json
import logging
import re
import shutil
import unicodedata
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models import ProductRecord, SearchResultPage

logger = logging.getLogger(__name__)


def safe_keyword(keyword: str) -> str:
    # NFC first; \w keeps Vietnamese letters, so 'sốt' and 'sắt' get separate files
    return re.sub(r'[^\w]', '_', unicodedata.normalize('NFC', keyword))


class FileManagerDelegate:
    """Handles all file system interactions for the pipeline."""
    def __init__(self, base_path: Path, temp_path: Optional[Path] = None):
        self.base_path = base_path
        self.searches_path = base_path / "searches"
        self.products_path = base_path / "products"
        self.temp_path = temp_path or base_path.parent / "temp"
        self.keywords_file = base_path / "search_keywords.json"
        self.categories_file = base_path / "drug_categories.json"
        self.dataset_file = base_path / "complete_dataset.json"

        for p in [self.base_path, self.searches_path, self.products_path, self.temp_path]:
            p.mkdir(parents=True, exist_ok=True)
        logger.info("File manager initialized. Data will be stored in subdirectories of: %s", base_path)

    def _write_json(self, file_path: Path, data: Any) -> Path:
        # Written beside the target and swapped in, so readers never see half a file.
        tmp_path = file_path.with_name(file_path.name + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            tmp_path.replace(file_path)
        except TypeError as te:
            logger.error("TypeError during JSON dump (unserializable object?) for %s: %s", file_path.name, te)
            tmp_path.unlink(missing_ok=True)
            raise
        except OSError as e:
            logger.error("Failed to write %s: %s", file_path, e, exc_info=True)
            tmp_path.unlink(missing_ok=True)
            raise
        return file_path

    def clean_temp(self):
        """Empties the OCR scratch directory left over from a previous run."""
        removed = 0
        for entry in self.temp_path.iterdir():
            if entry.is_dir():
                shutil.rmtree(entry, ignore_errors=True)
            else:
                entry.unlink(missing_ok=True)
            removed += 1
        logger.info("Temporary directory cleaned (%d entries removed).", removed)

    def product_dir(self, slug: str) -> Path:
        if not slug or not slug.strip() or slug in (".", "..") or "/" in slug or "\\" in slug:
            raise ValueError(f"Unsafe product slug: {slug!r}")
        return self.products_path / slug

    def product_file(self, slug: str) -> Path:
        return self.product_dir(slug) / "data.json"

    def product_exists(self, slug: str) -> bool:
        return self.product_file(slug).exists()

    def load_product(self, slug: str) -> Optional[ProductRecord]:
        """Loads a persisted product. Returns None if it is missing or unreadable."""
        file_path = self.product_file(slug)
        if not file_path.exists():
            return None
        try:
            with file_path.open("r", encoding="utf-8") as f:
                return ProductRecord.from_dict(json.load(f))
        except (ValueError, TypeError, OSError) as e:
            logger.error("Error reading existing product data %s: %s", file_path, e)
            return None

    def load_all_products(self) -> List[ProductRecord]:
        products = []
        for data_file in sorted(self.products_path.glob("*/data.json")):
            record = self.load_product(data_file.parent.name)
            if record:
                products.append(record)
        logger.info("Loaded %d persisted products from %s", len(products), self.products_path)
        return products

    def save_product(self, record: ProductRecord) -> Path:
        """Saves the final, structured JSON for a single product."""
        product_dir = self.product_dir(record.slug)
        product_dir.mkdir(parents=True, exist_ok=True)
        path = self._write_json(self.product_file(record.slug), record.to_dict())
        logger.info("Saved product details for %s", record.slug)
        return path

    def save_search_results(self, page: SearchResultPage) -> Path:
        """Saves one keyword's search results (image fields already stripped) as an audit artifact."""
        file_path = self.searches_path / f"{safe_keyword(page.keyword)}.json"
        self._write_json(file_path, page.to_dict())
        logger.debug("Saved search results for '%s' to %s", page.keyword, file_path.name)
        return file_path

    def save_keywords(self, seed: List[str], generated: List[str], all_keywords: List[str]) -> Path:
        return self._write_json(self.keywords_file, {
            "seed_keywords": seed,
            "generated_keywords": generated,
            "all_keywords": all_keywords,
        })

    def load_keywords(self) -> Optional[List[str]]:
        if not self.keywords_file.exists():
            logger.warning("Keyword file not found at: %s", self.keywords_file)
            return None
        try:
            with self.keywords_file.open("r", encoding="utf-8") as f:
                keywords = json.load(f).get("all_keywords")
        except (json.JSONDecodeError, AttributeError, OSError) as e:
            logger.error("Error loading keywords from %s: %s", self.keywords_file, e)
            return None
        if not isinstance(keywords, list):
            return None
        logger.info("Loaded %d keywords from %s", len(keywords), self.keywords_file.name)
        return [str(k) for k in keywords]

    def save_categories(self, data: Dict[str, Any]) -> Path:
        path = self._write_json(self.categories_file, data)
        logger.info("Saved drug categories to: %s", path.name)
        return path

    def save_dataset(self, data: Dict[str, Any]) -> Path:
        path = self._write_json(self.dataset_file, data)
        logger.info("Saved complete dataset to: %s", path.name)
        return path
