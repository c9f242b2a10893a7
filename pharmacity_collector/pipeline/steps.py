# pharmacity_collector/pipeline/steps.py
import asyncio
import enum
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set

from rich.pretty import pprint

from ..config import CollectorConfig
from ..delegates import FileManagerDelegate
from ..models import NOT_FOUND, ProductRecord, SearchItem, SearchMetadata
from .enrichment import categorize, expand_keywords, generate_questions, merge_keywords

logger = logging.getLogger(__name__)


class KeywordState(enum.Enum):
    PENDING = "pending"
    SEARCHING = "searching"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ProductState(enum.Enum):
    DISCOVERED = "discovered"
    ALREADY_PROCESSED = "already_processed"
    ALREADY_PERSISTED = "already_persisted"
    SCRAPING = "scraping"
    SCRAPED = "scraped"
    ENRICHING = "enriching"
    PERSISTED = "persisted"
    SCRAPE_FAILED = "scrape_failed"


# Product states a product can finish in.
TERMINAL_PRODUCT_STATES = {
    ProductState.ALREADY_PROCESSED,
    ProductState.ALREADY_PERSISTED,
    ProductState.PERSISTED,
    ProductState.SCRAPE_FAILED,
}


@dataclass
class KeywordOutcome:
    keyword: str
    state: KeywordState = KeywordState.PENDING
    total_found: int = 0
    processed: int = 0
    error: Optional[str] = None


@dataclass
class ProductEvent:
    keyword: str
    slug: str
    state: ProductState


@dataclass
class Collaborators:
    """The external services one run talks to. Anything with the same methods will do."""
    search: Any        # search(keyword, page, limit) -> SearchResultPage
    scraper: Any       # scrape(slug) -> ProductRecord | None
    downloader: Any    # fetch_and_store(urls, product_dir) -> [ImageOutcome]
    localizer: Any     # locate(image_urls, product_name_hint) -> [LocalizationResult]
    llm: Any           # generate(prompt) -> str


@dataclass
class CollectionRun:
    """State of one run. The dedup ledger (processed_slugs) lives only as long as the run."""
    seed_keywords: List[str] = field(default_factory=list)
    generated_keywords: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    processed_slugs: Set[str] = field(default_factory=set)
    products: List[ProductRecord] = field(default_factory=list)
    keyword_outcomes: Dict[str, KeywordOutcome] = field(default_factory=dict)
    product_events: List[ProductEvent] = field(default_factory=list)
    categories: Dict[str, List[int]] = field(default_factory=dict)
    started_at: float = field(default_factory=time.perf_counter)

    def record(self, keyword: str, slug: str, state: ProductState) -> ProductState:
        logger.debug("Product %s (keyword '%s') -> %s", slug, keyword, state.value)
        self.product_events.append(ProductEvent(keyword=keyword, slug=slug, state=state))
        return state

    def accept(self, record: ProductRecord):
        self.products.append(record)
        self.processed_slugs.add(record.slug)

    def outcome_counts(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in TERMINAL_PRODUCT_STATES}
        for event in self.product_events:
            if event.state in TERMINAL_PRODUCT_STATES:
                counts[event.state.value] += 1
        return counts

    @property
    def elapsed_seconds(self) -> float:
        return time.perf_counter() - self.started_at


async def _pause(seconds: float):
    if seconds > 0:
        await asyncio.sleep(seconds)


def build_search_metadata(item: SearchItem, keyword: str) -> SearchMetadata:
    return SearchMetadata(
        keyword=keyword,
        sku=item.sku,
        brand_code=item.brand_code,
        brand_name=item.brand_name,
        is_prescription_drug=item.is_prescription_drug,
        is_drug=item.is_drug,
        found_date=datetime.now(timezone.utc).isoformat(),
    )


async def step_1_expand_keywords(llm, file_manager: FileManagerDelegate, config: CollectorConfig,
                                 run: CollectionRun) -> List[str]:
    """
    Step 1: Asks the language model for more search keywords and merges them with the seeds.
    """
    logger.info("--- STEP 1: GENERATING SEARCH KEYWORDS ---")
    seed = list(config.seed_keywords)
    generated = await expand_keywords(llm, seed, config.keywords_per_batch)
    all_keywords = merge_keywords(seed, generated)

    run.seed_keywords = seed
    run.generated_keywords = generated
    run.keywords = all_keywords
    file_manager.save_keywords(seed, generated, all_keywords)

    if logger.isEnabledFor(logging.DEBUG):
        pprint(generated, max_length=20)
    logger.info("Generated %d keywords. Total unique keywords: %d", len(generated), len(all_keywords))
    logger.info("--- STEP 1 COMPLETE ---")
    return all_keywords


async def enrich_product(record: ProductRecord, collaborators: Collaborators,
                         file_manager: FileManagerDelegate, config: CollectorConfig):
    """Images, chatbot questions and OCR localization for a freshly scraped product."""
    if record.images:
        await collaborators.downloader.fetch_and_store(record.images, file_manager.product_dir(record.slug))

    logger.info("Generating chatbot questions for %s...", record.slug)
    questions = await generate_questions(collaborators.llm, record)
    if questions:
        record.chatbot_questions = questions
    await _pause(config.llm_delay_seconds)

    if record.images:
        logger.info("Generating OCR location data for %s...", record.slug)
        hint = record.name if record.name != NOT_FOUND else None
        try:
            locations = await collaborators.localizer.locate(record.images, hint)
        except Exception as e:
            # The product is still worth keeping without boxes.
            logger.error("Error during OCR processing for %s: %s", record.slug, e, exc_info=True)
            locations = []
        if locations:
            record.ocr_locations = locations


async def process_search_item(item: SearchItem, keyword: str, run: CollectionRun,
                              collaborators: Collaborators, file_manager: FileManagerDelegate,
                              config: CollectorConfig) -> ProductState:
    """Moves one search hit through the product state machine and returns where it ended up."""
    slug = item.slug
    run.record(keyword, slug, ProductState.DISCOVERED)

    if slug in run.processed_slugs:
        logger.info("Skipping duplicate product: %s", slug)
        return run.record(keyword, slug, ProductState.ALREADY_PROCESSED)

    if file_manager.product_exists(slug):
        existing = file_manager.load_product(slug)
        if existing is not None:
            logger.info("Product already exists: %s", slug)
            run.accept(existing)
            return run.record(keyword, slug, ProductState.ALREADY_PERSISTED)
        logger.warning("Persisted data for %s is unreadable, scraping again.", slug)

    logger.info("Processing: %s", item.name or slug)
    run.record(keyword, slug, ProductState.SCRAPING)
    record = await collaborators.scraper.scrape(slug)
    if record is None:
        logger.error("Failed to scrape product: %s", slug)
        return run.record(keyword, slug, ProductState.SCRAPE_FAILED)
    run.record(keyword, slug, ProductState.SCRAPED)

    record.search_metadata = build_search_metadata(item, keyword)
    run.record(keyword, slug, ProductState.ENRICHING)
    await enrich_product(record, collaborators, file_manager, config)

    file_manager.save_product(record)
    run.accept(record)
    return run.record(keyword, slug, ProductState.PERSISTED)


async def step_2_collect_products(run: CollectionRun, collaborators: Collaborators,
                                  file_manager: FileManagerDelegate, config: CollectorConfig,
                                  search_only: bool = False):
    """
    Step 2: Searches every keyword, saves each result page, and collects each product not seen yet.
    """
    logger.info("--- STEP 2: SEARCHING AND COLLECTING PRODUCTS ---")
    for keyword in run.keywords:
        outcome = run.keyword_outcomes.setdefault(keyword, KeywordOutcome(keyword=keyword))
        outcome.state = KeywordState.SEARCHING
        logger.info("[bold blue]Searching for:[/bold blue] '%s'", keyword)

        try:
            page = await collaborators.search.search(keyword, page=1, limit=config.max_products_per_keyword)
            file_manager.save_search_results(page)
        except Exception as e:
            logger.error("Error processing keyword '%s': %s", keyword, e, exc_info=True)
            outcome.state = KeywordState.FAILED
            outcome.error = str(e)
            continue

        outcome.total_found = page.total
        if page.failed:
            outcome.state = KeywordState.FAILED
            outcome.error = page.error
            continue
        outcome.state = KeywordState.SUCCEEDED
        logger.info("Found %d products, processing up to %d", page.total, config.max_products_per_keyword)

        if search_only:
            continue

        for item in page.items:
            try:
                state = await process_search_item(item, keyword, run, collaborators, file_manager, config)
            except Exception as e:
                logger.error("Error processing product %s: %s", item.slug, e, exc_info=True)
                state = run.record(keyword, item.slug, ProductState.SCRAPE_FAILED)

            if state in (ProductState.PERSISTED, ProductState.ALREADY_PERSISTED):
                outcome.processed += 1
            # Only items that reached the site are paced; dedup and on-disk hits made no request.
            if state in (ProductState.PERSISTED, ProductState.SCRAPE_FAILED):
                await _pause(config.delay_seconds)

    logger.info("Collected %d products from %d keywords.", len(run.products), len(run.keywords))
    logger.info("--- STEP 2 COMPLETE ---")


def sample_products(products: Sequence[ProductRecord], limit: int, rng: random.Random) -> List[ProductRecord]:
    """Up to `limit` products picked at random, keeping the prompt to the model bounded."""
    if len(products) <= limit:
        selected = list(products)
        rng.shuffle(selected)
        return selected
    return rng.sample(list(products), limit)


async def step_3_categorize_products(run: CollectionRun, llm, file_manager: FileManagerDelegate,
                                     config: CollectorConfig) -> Dict[str, List[int]]:
    """
    Step 3: Groups a random sample of the collected products into drug categories.
    """
    logger.info("--- STEP 3: GENERATING DRUG CATEGORIES ---")
    if not run.products:
        logger.warning("No products collected, skipping categorization.")
        return {}

    rng = random.Random(config.random_seed)
    selected = sample_products(run.products, config.max_category_samples, rng)
    descriptions = [
        f"{p.name}\n{p.description if p.description != NOT_FOUND else ''}" for p in selected
    ]
    categories = await categorize(llm, descriptions)
    run.categories = categories

    file_manager.save_categories({
        "categories": categories,
        "products": [
            {
                "slug": p.slug,
                "name": p.name,
                "categories": [name for name, indices in categories.items() if i in indices],
            }
            for i, p in enumerate(selected)
        ],
    })
    logger.info("Sorted %d sampled products into %d categories.", len(selected), len(categories))
    logger.info("--- STEP 3 COMPLETE ---")
    return categories


def step_4_write_dataset(run: CollectionRun, file_manager: FileManagerDelegate):
    """Step 4: Writes every collected record plus run metadata into one dataset file."""
    file_manager.save_dataset({
        "metadata": {
            "total_products": len(run.products),
            "total_keywords": len(run.keywords),
            "collection_date": datetime.now(timezone.utc).isoformat(),
            "execution_time_seconds": run.elapsed_seconds,
            "product_outcomes": run.outcome_counts(),
            "search_results": {
                keyword: {
                    "total_found": outcome.total_found,
                    "processed": outcome.processed,
                    "status": outcome.state.value,
                    "error": outcome.error,
                }
                for keyword, outcome in run.keyword_outcomes.items()
            },
        },
        "keywords": run.keywords,
        "products": [p.to_dict() for p in run.products],
    })


async def run_collection(steps_to_run: Sequence[int], collaborators: Collaborators,
                         file_manager: FileManagerDelegate, config: CollectorConfig,
                         search_only: bool = False) -> CollectionRun:
    """Runs the selected steps in order. Skipped steps fall back to what is already on disk."""
    run = CollectionRun()

    if 1 in steps_to_run:
        await step_1_expand_keywords(collaborators.llm, file_manager, config, run)
    else:
        run.seed_keywords = list(config.seed_keywords)
        run.keywords = file_manager.load_keywords() or list(config.seed_keywords)
        logger.info("Step 1 skipped. Using %d keywords.", len(run.keywords))

    if 2 in steps_to_run:
        await step_2_collect_products(run, collaborators, file_manager, config, search_only=search_only)
    else:
        logger.info("Step 2 skipped. Loading persisted products.")
        for record in file_manager.load_all_products():
            run.accept(record)

    if search_only:
        logger.info("Search-only run: skipping categorization and dataset snapshot.")
    elif 3 in steps_to_run:
        await step_3_categorize_products(run, collaborators.llm, file_manager, config)
        step_4_write_dataset(run, file_manager)
    else:
        logger.info("Step 3 skipped as per --steps argument.")

    logger.info("Data collection completed in %.2f seconds. Total products collected: %d",
                run.elapsed_seconds, len(run.products))
    return run
