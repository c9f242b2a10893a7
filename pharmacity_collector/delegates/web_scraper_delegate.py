# pharmacity_collector/delegates/web_scraper_delegate.py
import logging
import re
from typing import Dict, List, Optional, Tuple

from lxml import html as lxml_html
from playwright.async_api import (
    BrowserContext,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from ..models import NOT_FOUND, ProductRecord

logger = logging.getLogger(__name__)

HEADING_SELECTOR = "h1.line-clamp-3"
IMAGE_HOST = "pharmacity.io"
SKU_PATTERN = re.compile(r"(P\d+)", re.IGNORECASE)
RESOLUTION_PATTERN = re.compile(r"(\d{2,5})x(\d{2,5})")
# File name without extension or query string, e.g. ".../P12345_2.png?v=1" -> "P12345_2"
FILE_BASE_PATTERN = re.compile(r"([^/]+)(?:\.\w+)(?:\?.*)?$")
VARIANT_SUFFIX_PATTERN = re.compile(r"_\d+$")


def _class_xpath(tag: str, *classes: str) -> str:
    """XPath for `tag` elements whose class attribute contains every given substring (like CSS [class*=...])."""
    conditions = " and ".join(f"contains(@class, '{c}')" for c in classes)
    return f".//{tag}[{conditions}]"


def _exact_class_xpath(tag: str, *classes: str) -> str:
    """XPath for `tag` elements carrying every given class token (like CSS tag.a.b)."""
    conditions = " and ".join(
        f"contains(concat(' ', normalize-space(@class), ' '), ' {c} ')" for c in classes
    )
    return f".//{tag}[{conditions}]"


def _first_text(root, xpath: str) -> Optional[str]:
    nodes = root.xpath(xpath)
    if not nodes:
        return None
    text = nodes[0].text_content().strip()
    return text or None


def _list_items(section) -> List[str]:
    if section is None:
        return []
    return [li.text_content().strip() for li in section.xpath(".//li")]


def _section(root, section_id: str):
    nodes = root.xpath(f".//*[@id='{section_id}']")
    return nodes[0] if nodes else None


def resolution_rank(url: str) -> int:
    """Largest pixel dimension named in the URL (e.g. 1080 for '.../1080x1080/...'), 0 if none."""
    dims = [max(int(w), int(h)) for w, h in RESOLUTION_PATTERN.findall(url)]
    return max(dims) if dims else 0


def image_base_name(url: str) -> str:
    match = FILE_BASE_PATTERN.search(url)
    if not match:
        return ""
    return VARIANT_SUFFIX_PATTERN.sub("", match.group(1))


def select_product_images(images: List[Tuple[str, str]], sku_token: str) -> List[str]:
    """
    Picks the product's own images from (src, srcset) pairs.

    Only URLs containing the SKU token count. From a srcset the last (largest)
    entry is taken. Variants of the same picture are then collapsed to the
    highest-resolution one by file-name base.
    """
    if not sku_token:
        return []

    candidates: List[str] = []
    for src, srcset in images:
        src = src or ""
        srcset = srcset or ""
        if sku_token not in src and sku_token not in srcset:
            continue
        if srcset:
            srcset_urls = [part.strip().split(" ")[0] for part in srcset.split(",")]
            srcset_urls = [u for u in srcset_urls if sku_token in u]
            if srcset_urls and srcset_urls[-1] not in candidates:
                candidates.append(srcset_urls[-1])
        if sku_token in src and src not in candidates:
            candidates.append(src)

    # sorted() is stable, so equal resolutions keep page order.
    ordered = sorted(candidates, key=resolution_rank, reverse=True)
    unique: List[str] = []
    seen_bases = set()
    for url in ordered:
        base = image_base_name(url)
        if base and base not in seen_bases:
            seen_bases.add(base)
            unique.append(url)
    return unique


def extract_product_record(page_html: str, slug: str) -> ProductRecord:
    """Pulls the product fields out of a rendered product page. Missing parts become NOT_FOUND or []."""
    record = ProductRecord(slug=slug)
    if not page_html or not page_html.strip():
        return record
    root = lxml_html.fromstring(page_html)

    record.name = _first_text(root, _exact_class_xpath("h1", "line-clamp-3")) or NOT_FOUND
    record.price = _first_text(root, _class_xpath("div", "text-xl", "font-bold", "text-primary-500")) or NOT_FOUND
    record.sku = _first_text(root, _exact_class_xpath("p", "text-sm", "leading-5", "text-neutral-600")) or NOT_FOUND
    brand = _first_text(root, _exact_class_xpath("a", "text-sm", "leading-5", "text-primary-500"))
    record.brand = brand.replace("Thương hiệu: ", "").strip() if brand else NOT_FOUND

    sku_match = SKU_PATTERN.search(record.sku)
    sku_token = sku_match.group(1) if sku_match else ""
    page_images = [
        (img.get("src"), img.get("srcset"))
        for img in root.xpath(f".//img[contains(@src, '{IMAGE_HOST}')]")
    ]
    record.images = select_product_images(page_images, sku_token)

    details = root.xpath(".//div[starts-with(@id, 'radix-')]")
    if not details:
        logger.debug("No details section found for %s", slug)
        return record
    details = details[0]

    description = _section(details, "mo-ta")
    if description is not None:
        record.description = _first_text(description, ".//p") or NOT_FOUND
    record.ingredients = _list_items(_section(details, "thanh-phan"))
    record.usage = _list_items(_section(details, "chi-dinh"))

    instructions = _section(details, "huong-dan-su-dung")
    record.usage_instructions = _list_items(instructions)
    if instructions is not None:
        for paragraph in instructions.xpath(".//p"):
            text = paragraph.text_content().strip()
            if "Dùng" in text:
                record.usage_method = text
                break

    cautions = _section(details, "than-trong")
    if cautions is not None:
        for heading in cautions.xpath(".//h2 | .//h3"):
            next_list = next((sib for sib in heading.itersiblings() if sib.tag == "ul"), None)
            items = _list_items(next_list)
            title = heading.text_content()
            if "Tác dụng phụ" in title:
                record.side_effects = items
            elif "Chống chỉ định" in title:
                record.contraindications = items
            elif "Thận trọng" in title:
                record.precautions = items
    return record


class WebScraperDelegate:
    """Renders product pages in a headless browser and extracts their records."""
    def __init__(self, base_url: str, user_agent: str, viewport: Dict,
                 navigation_timeout: int, heading_timeout: int):
        self.base_url = base_url
        self.user_agent = user_agent
        self.viewport = viewport
        self.navigation_timeout = navigation_timeout
        self.heading_timeout = heading_timeout
        self._playwright: Optional[Playwright] = None
        self._browser = None
        self._context: Optional[BrowserContext] = None

    async def __aenter__(self):
        logger.debug("Starting Playwright and launching browser...")
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=True, args=["--no-sandbox", "--disable-setuid-sandbox"]
        )
        self._context = await self._browser.new_context(
            user_agent=self.user_agent,
            viewport=self.viewport,
        )
        logger.debug("Playwright browser launched and context created.")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        logger.debug("Closing browser, context, and stopping Playwright...")
        if self._context:
            await self._context.close()
        if self._browser:
            await self._browser.close()
        if self._playwright:
            await self._playwright.stop()
        logger.debug("Playwright resources released.")

    def product_url(self, slug: str) -> str:
        return f"{self.base_url}{slug}.html"

    async def scrape(self, slug: str) -> Optional[ProductRecord]:
        """
        Renders the product page and extracts a ProductRecord.
        Returns None only when the page could not be loaded at all.
        """
        if not self._context:
            logger.error("Browser context not initialized. Cannot scrape %s.", slug)
            return None

        url = self.product_url(slug)
        page = await self._context.new_page()
        try:
            logger.info("Scraping product: %s", url)
            try:
                await page.goto(url, wait_until="networkidle", timeout=self.navigation_timeout)
            except Exception as e:
                logger.error("Failed to load product page %s: %s", url, e)
                return None

            try:
                await page.wait_for_selector(HEADING_SELECTOR, timeout=self.heading_timeout)
            except PlaywrightTimeoutError:
                logger.warning("Heading did not appear on %s within %d ms, extracting what is there.",
                               url, self.heading_timeout)

            page_html = await page.content()
        except Exception as e:
            logger.error("Error scraping %s: %s", slug, e)
            return None
        finally:
            await page.close()

        record = extract_product_record(page_html, slug)
        logger.debug("Extracted %s: name=%s, %d images", slug, record.name, len(record.images))
        return record
