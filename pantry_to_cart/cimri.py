from __future__ import annotations

import logging

from .browser import BrowserRenderer, browserless_ws_endpoint
from .cache import FileCache
from .config import Config, ScraperOptions
from .fetch import Fetcher, IdentityPool, RateLimiter
from .mapper import map_listings, map_product_detail
from .models import ProductDetail, SearchRequest, SearchResult
from .parser import extract
from .query import build_detail_url, build_search_url

logger = logging.getLogger(__name__)


class CimriClient:
    """Search and product-detail operations against the aggregator site.

    Raw page bodies are cached by URL; only non-empty bodies are stored.
    """

    def __init__(self, options: ScraperOptions, fetcher: Fetcher, cache: FileCache):
        self.options = options
        self.fetcher = fetcher
        self.cache = cache

    def fetch_html(self, url: str) -> str:
        cached = self.cache.get(url)
        if isinstance(cached, str) and cached:
            return cached
        result = self.fetcher.fetch(url)
        if result.is_empty:
            logger.warning("no content for %s", url)
            return ""
        self.cache.set(url, result.raw_body)
        logger.debug("fetched %s via %s", url, result.source_method)
        return result.raw_body

    def search(self, query: str, page: int = 1, sort: str | None = None) -> SearchResult:
        if not query or not query.strip():
            raise ValueError("search query must not be empty")
        if page < 1:
            raise ValueError("page must be >= 1")

        query = query.strip()
        url = build_search_url(self.options.base_url, query, page=page, sort=sort)
        logger.info("search %r page %d (%s)", query, page, url)

        html = self.fetch_html(url)
        if not html:
            return SearchResult(query=query, current_page=page, fetch_failed=True)

        extracted = extract(html)
        result = SearchResult(
            query=query,
            current_page=page,
            total_pages=extracted.total_pages,
            products=map_listings(extracted, self.options.site_root),
        )
        if result.total_pages and page > result.total_pages:
            logger.info("page %d is beyond the last page (%d)", page, result.total_pages)
        logger.info("search %r: %d products, %d pages", query, len(result.products), result.total_pages)
        return result

    def run(self, request: SearchRequest) -> SearchResult:
        return self.search(request.raw_term, page=request.page, sort=request.sort_hint)

    def get_product_detail(self, product_id: str) -> ProductDetail | None:
        """None when the detail page could not be fetched at all."""
        if not product_id or not product_id.strip():
            raise ValueError("product id must not be empty")
        url = build_detail_url(self.options.detail_url_template, product_id)
        html = self.fetch_html(url)
        if not html:
            return None
        return map_product_detail(extract(html), product_id.strip())

    def clean_cache(self) -> int:
        return self.cache.evict_stale()


def _renderer(ws: str | None, timeout_s: float) -> BrowserRenderer:
    # Navigation plus settle wait stays within the fetch timeout.
    budget_ms = int(timeout_s * 1000)
    settle_ms = min(3_000, budget_ms // 10)
    return BrowserRenderer(ws_endpoint=ws, nav_timeout_ms=budget_ms - settle_ms, settle_ms=settle_ms)


def build_client(cfg: Config) -> CimriClient:
    o = cfg.scraper
    ws = None
    if cfg.browserless_url and cfg.browserless_token:
        ws = browserless_ws_endpoint(base_ws_url=cfg.browserless_url, token=cfg.browserless_token)

    fetcher = Fetcher(
        rate_limiter=RateLimiter(o.min_delay_ms / 1000, o.max_delay_ms / 1000),
        identities=IdentityPool(referer=o.site_root + "/"),
        renderer=_renderer(ws, o.request_timeout_seconds),
        max_retries=o.max_retries,
        retry_delay_s=o.retry_delay_seconds,
        timeout_s=o.request_timeout_seconds,
    )
    cache = FileCache(
        o.cache_directory,
        default_ttl=o.cache_duration_minutes * 60,
        max_entries=o.max_cache_files,
    )
    return CimriClient(o, fetcher, cache)
