# pharmacity_collector/delegates/search_delegate.py
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

import httpx

from ..errors import classify_http_error
from ..models import SearchItem, SearchResultPage

logger = logging.getLogger(__name__)

# Search hits should never trigger image downloads, so these are dropped on arrival.
IMAGE_FIELDS = ("image", "thumb_image", "images")


def encode_keyword(keyword: str) -> str:
    """Percent-encodes the keyword one character at a time, the way the storefront's own client does."""
    return "".join(quote(char, safe="") for char in keyword)


def strip_image_fields(item: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in item.items() if k not in IMAGE_FIELDS}


class SearchDelegate:
    """Queries the catalog search endpoint."""
    def __init__(self, base_url: str, user_agent: str, timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self.client = httpx.AsyncClient(
            headers={"User-Agent": self.user_agent, "Accept": "application/json"},
            timeout=self.timeout,
            transport=self._transport,
        )
        logger.debug("SearchDelegate httpx.AsyncClient initialized.")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            await self.client.aclose()
            logger.debug("SearchDelegate httpx.AsyncClient closed.")

    def build_search_url(self, keyword: str, page: int, limit: int) -> str:
        # The keyword is already percent-encoded, so it is appended by hand rather than through urlencode.
        params = urlencode({
            "platform": 1,
            "index": page,
            "limit": limit,
            "total": 0,
            "refresh": "true",
        })
        tail = urlencode({"order": "desc", "order_by": "de-xuat"})
        return f"{self.base_url}/pmc-ecm-product/api/public/search/index?{params}&keyword={encode_keyword(keyword)}&{tail}"

    async def search(self, keyword: str, page: int = 1, limit: int = 20) -> SearchResultPage:
        """
        Returns one page of results for `keyword`. Never raises: a transport or
        parse failure yields an empty page with `error` set.
        """
        if not self.client:
            logger.error("HTTP client not initialized. Cannot search.")
            return SearchResultPage(keyword=keyword, error="client not initialized")

        url = self.build_search_url(keyword, page, limit)
        try:
            logger.debug("Searching: %s", url)
            response = await self.client.get(url)
            response.raise_for_status()
            envelope = response.json()
            data = envelope.get("data") or {}
            raw_items = data.get("items") or []
            items = [SearchItem.from_raw(strip_image_fields(item)) for item in raw_items if isinstance(item, dict)]
            total = int(data.get("total") or 0)
        except (httpx.HTTPError, ValueError, AttributeError, TypeError) as e:
            error = classify_http_error(e)
            logger.error("Error searching for '%s': %s", keyword, error)
            return SearchResultPage(keyword=keyword, error=str(error))

        items = [item for item in items if item.slug]
        logger.info("Search '%s' returned %d of %d products.", keyword, len(items), total)
        return SearchResultPage(keyword=keyword, total=total, items=items)
