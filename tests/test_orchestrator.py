"""
End-to-end runs of the collection steps against fake collaborators and a real on-disk store.
"""

import json
import random

import pytest

from pharmacity_collector.delegates import FileManagerDelegate
from pharmacity_collector.models import ProductRecord
from pharmacity_collector.pipeline import Collaborators, run_collection
from pharmacity_collector.pipeline.steps import KeywordState, ProductState, sample_products

from conftest import FakeDownloader, FakeLLM, FakeLocalizer, FakeScraper, FakeSearch

SEARCH_RESULTS = {
    "ho": ["panadol", "prospan"],
    "sốt": ["prospan", "efferalgan"],
    "mới": ["panadol"],
}


def collaborators(search=None, scraper=None, llm=None):
    return Collaborators(
        search=search or FakeSearch(SEARCH_RESULTS),
        scraper=scraper or FakeScraper(),
        downloader=FakeDownloader(),
        localizer=FakeLocalizer(),
        llm=llm or FakeLLM(),
    )


def read_json(path):
    with path.open(encoding="utf-8") as f:
        return json.load(f)


@pytest.mark.asyncio
async def test_full_run_collects_each_product_once(config, file_manager):
    parts = collaborators()

    run = await run_collection([1, 2, 3], parts, file_manager, config)

    assert run.keywords == ["ho", "sốt", "mới"]
    assert parts.scraper.calls == ["panadol", "prospan", "efferalgan"]
    assert sorted(p.slug for p in run.products) == ["efferalgan", "panadol", "prospan"]
    assert len(parts.downloader.calls) == 3

    record = read_json(file_manager.product_file("panadol"))
    assert record["search_metadata"]["keyword"] == "ho"
    assert record["search_metadata"]["found_date"]
    assert record["chatbot_questions"] == ["Thuốc này dùng thế nào?"]
    assert record["ocr_locations"][0]["location"] == {"x_center": 0.5, "y_center": 0.5, "width": 0.8, "height": 0.8}

    skipped = [e for e in run.product_events if e.state is ProductState.ALREADY_PROCESSED]
    assert [(e.keyword, e.slug) for e in skipped] == [("sốt", "prospan"), ("mới", "panadol")]

    keywords = read_json(file_manager.keywords_file)
    assert keywords["generated_keywords"] == ["mới"]
    assert keywords["all_keywords"] == ["ho", "sốt", "mới"]
    assert (file_manager.searches_path / "ho.json").exists()

    dataset = read_json(file_manager.dataset_file)
    assert dataset["metadata"]["total_products"] == 3
    assert dataset["metadata"]["search_results"]["ho"] == {
        "total_found": 2, "processed": 2, "status": "succeeded", "error": None,
    }
    assert dataset["metadata"]["product_outcomes"]["persisted"] == 3
    assert dataset["metadata"]["product_outcomes"]["already_processed"] == 2

    categories = read_json(file_manager.categories_file)
    assert categories["categories"] == {"Giảm đau": [0]}
    assert len(categories["products"]) == 3
    assert categories["products"][0]["categories"] == ["Giảm đau"]


@pytest.mark.asyncio
async def test_rerun_reuses_persisted_products(config, file_manager):
    await run_collection([1, 2, 3], collaborators(), file_manager, config)

    second = collaborators()
    run = await run_collection([1, 2, 3], second, FileManagerDelegate(config.output_dir, config.temp_dir), config)

    assert second.scraper.calls == []
    assert second.downloader.calls == []
    assert second.localizer.calls == []
    assert sorted(p.slug for p in run.products) == ["efferalgan", "panadol", "prospan"]
    assert run.outcome_counts()["already_persisted"] == 3

    dataset = read_json(file_manager.dataset_file)
    slugs = [p["slug"] for p in dataset["products"]]
    assert len(slugs) == len(set(slugs)) == 3


@pytest.mark.asyncio
async def test_unreadable_product_file_is_scraped_again(config, file_manager):
    product_file = file_manager.product_file("panadol")
    product_file.parent.mkdir(parents=True)
    product_file.write_text("{not json", encoding="utf-8")
    parts = collaborators(search=FakeSearch({"ho": ["panadol"]}))

    run = await run_collection([2], parts, file_manager, config)

    assert parts.scraper.calls == ["panadol"]
    assert read_json(product_file)["slug"] == "panadol"
    assert [p.slug for p in run.products] == ["panadol"]


@pytest.mark.asyncio
async def test_failed_search_and_scrape_do_not_stop_the_run(config, file_manager):
    search = FakeSearch({"ho": ["panadol", "broken"], "sốt": ["efferalgan"]}, failing=("ho",))
    scraper = FakeScraper(broken=("efferalgan",))
    config = config.with_overrides(seed_keywords=["ho", "sốt"])

    run = await run_collection([2, 3], collaborators(search=search, scraper=scraper), file_manager, config)

    assert run.keyword_outcomes["ho"].state is KeywordState.FAILED
    assert run.keyword_outcomes["ho"].error == "HTTP 503 from search"
    assert run.keyword_outcomes["sốt"].state is KeywordState.SUCCEEDED
    assert run.keyword_outcomes["sốt"].processed == 0
    assert run.products == []
    assert not file_manager.product_exists("efferalgan")
    assert run.outcome_counts()["scrape_failed"] == 1

    dataset = read_json(file_manager.dataset_file)
    assert dataset["metadata"]["search_results"]["ho"]["status"] == "failed"
    assert dataset["products"] == []


@pytest.mark.asyncio
async def test_search_only_saves_results_without_scraping(config, file_manager):
    parts = collaborators()
    parts.scraper = None

    run = await run_collection([2], parts, file_manager, config, search_only=True)

    assert run.products == []
    assert (file_manager.searches_path / "ho.json").exists()
    assert not file_manager.dataset_file.exists()
    assert list(file_manager.products_path.iterdir()) == []


@pytest.mark.asyncio
async def test_skipping_steps_loads_keywords_and_products_from_disk(config, file_manager):
    await run_collection([1, 2], collaborators(), file_manager, config)

    llm = FakeLLM()
    run = await run_collection([3], collaborators(llm=llm), file_manager, config)

    assert run.keywords == ["ho", "sốt", "mới"]
    assert sorted(p.slug for p in run.products) == ["efferalgan", "panadol", "prospan"]
    assert len(llm.prompts) == 1
    assert read_json(file_manager.dataset_file)["metadata"]["total_products"] == 3


@pytest.mark.asyncio
async def test_non_object_product_file_is_scraped_again(config, file_manager):
    product_file = file_manager.product_file("panadol")
    product_file.parent.mkdir(parents=True)
    product_file.write_text("[]", encoding="utf-8")
    parts = collaborators(search=FakeSearch({"ho": ["panadol"]}))

    run = await run_collection([2], parts, file_manager, config)

    assert parts.scraper.calls == ["panadol"]
    assert run.outcome_counts()["persisted"] == 1
    assert read_json(product_file)["slug"] == "panadol"


@pytest.mark.asyncio
async def test_non_object_product_file_does_not_stop_categorization(config, file_manager):
    file_manager.save_product(ProductRecord(slug="panadol", name="Panadol"))
    broken = file_manager.product_file("broken")
    broken.parent.mkdir(parents=True)
    broken.write_text("[1, 2]", encoding="utf-8")

    run = await run_collection([3], collaborators(), file_manager, config)

    assert [p.slug for p in run.products] == ["panadol"]
    assert read_json(file_manager.dataset_file)["metadata"]["total_products"] == 1


@pytest.mark.asyncio
async def test_unsafe_slug_from_search_is_a_failed_scrape(config, file_manager):
    parts = collaborators(search=FakeSearch({"ho": ["../escape", "panadol"]}))

    run = await run_collection([2], parts, file_manager, config)

    assert parts.scraper.calls == ["panadol"]
    assert [p.slug for p in run.products] == ["panadol"]
    assert run.outcome_counts()["scrape_failed"] == 1
    assert not (file_manager.products_path.parent / "escape").exists()


NAMES = ["Alpha", "Bravo", "Charlie", "Delta", "Echo"]


@pytest.mark.asyncio
async def test_categorization_prompt_is_bounded_by_sample_size(config, file_manager):
    config = config.with_overrides(max_category_samples=3)
    for name in NAMES:
        file_manager.save_product(ProductRecord(slug=name.lower(), name=name, description=f"Mô tả {name}"))

    llm = FakeLLM(categories='{"Giảm đau": [0, 1, 2]}')
    await run_collection([3], collaborators(llm=llm), file_manager, config)

    prompt = llm.prompts[0]
    sampled = [name for name in NAMES if name in prompt]
    assert len(sampled) == 3
    categories = read_json(file_manager.categories_file)
    assert len(categories["products"]) == 3
    assert sorted(p["name"] for p in categories["products"]) == sorted(sampled)
    assert read_json(file_manager.dataset_file)["metadata"]["total_products"] == 5

    again = FakeLLM(categories='{"Giảm đau": [0, 1, 2]}')
    await run_collection([3], collaborators(llm=again), file_manager, config)

    assert again.prompts == llm.prompts
    assert read_json(file_manager.categories_file)["products"] == categories["products"]


def test_sample_products_caps_large_collections():
    products = [ProductRecord(slug=f"p{i}", name=f"P{i}") for i in range(101)]

    picked = sample_products(products, 100, random.Random(7))

    assert len(picked) == 100
    assert len({p.slug for p in picked}) == 100
    assert [p.slug for p in sample_products(products, 100, random.Random(7))] == [p.slug for p in picked]
    assert len(sample_products(products[:3], 100, random.Random(7))) == 3
