# tests/conftest.py
# Shared fakes for the collaborators the pipeline talks to. None of them touch the network.

import io
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from PIL import Image

from pharmacity_collector.config import CollectorConfig
from pharmacity_collector.delegates import FileManagerDelegate
from pharmacity_collector.models import (
    ImageOutcome,
    LocalizationResult,
    ProductRecord,
    SearchItem,
    SearchResultPage,
)


class FakeLLM:
    """Answers by prompt content; records every prompt it was sent."""

    def __init__(self, keywords='["mới"]', categories='{"Giảm đau": [0]}', questions='["Thuốc này dùng thế nào?"]',
                 drug='{"drugName": "Panadol Extra", "confidence": 90}'):
        self.keywords = keywords
        self.categories = categories
        self.questions = questions
        self.drug = drug
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if "search keywords" in prompt:
            return self.keywords
        if "categorize" in prompt:
            return self.categories
        if "potential questions" in prompt:
            return self.questions
        return self.drug


class FakeSearch:
    def __init__(self, results: Dict[str, List[str]], failing: tuple = ()):
        self.results = results
        self.failing = failing
        self.queries: List[str] = []

    async def search(self, keyword: str, page: int = 1, limit: int = 20) -> SearchResultPage:
        self.queries.append(keyword)
        if keyword in self.failing:
            return SearchResultPage(keyword=keyword, error="HTTP 503 from search")
        slugs = self.results.get(keyword, [])[:limit]
        items = [
            SearchItem.from_raw({"slug": slug, "name": f"Product {slug}", "sku": f"P{i}", "is_drug": True})
            for i, slug in enumerate(slugs)
        ]
        return SearchResultPage(keyword=keyword, total=len(items), items=items)


class FakeScraper:
    def __init__(self, broken: tuple = ()):
        self.broken = broken
        self.calls: List[str] = []

    async def scrape(self, slug: str) -> Optional[ProductRecord]:
        self.calls.append(slug)
        if slug in self.broken:
            return None
        return ProductRecord(
            slug=slug,
            name=f"Product {slug}",
            description=f"Mô tả {slug}",
            images=[f"https://cdn.pharmacity.io/{slug}.jpg"],
        )


class FakeDownloader:
    def __init__(self):
        self.calls: List[List[str]] = []

    async def fetch_and_store(self, urls, product_dir: Path):
        self.calls.append(list(urls))
        return [ImageOutcome.DOWNLOADED for _ in urls]


class FakeLocalizer:
    def __init__(self):
        self.calls: List[List[str]] = []

    async def locate(self, image_urls, product_name_hint=None):
        self.calls.append(list(image_urls))
        return [LocalizationResult(image_index=i, url=url) for i, url in enumerate(image_urls)]


def jpeg_bytes(size=(64, 48), color=(200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


@pytest.fixture
def config(tmp_path) -> CollectorConfig:
    return CollectorConfig(
        gemini_api_key="test-key",
        output_dir=tmp_path / "data",
        temp_dir=tmp_path / "temp",
        seed_keywords=("ho", "sốt"),
        delay_seconds=0,
        llm_delay_seconds=0,
        ocr_delay_seconds=0,
        image_delay_seconds=0,
        random_seed=7,
    )


@pytest.fixture
def file_manager(config) -> FileManagerDelegate:
    return FileManagerDelegate(base_path=config.output_dir, temp_path=config.temp_dir)
