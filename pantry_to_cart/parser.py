"""Pull machine-readable data out of retailer HTML.

Three independent sources are tried on every page:

1. ``<script type="application/ld+json">`` blocks (schema.org markup)
2. the ``__NEXT_DATA__`` application-state block, located structurally
3. the same block located by regex when the structural parse found nothing

A failure in one source is logged and never stops the others.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

APP_STATE_SCRIPT_ID = "__NEXT_DATA__"

_X_OF_Y_RE = re.compile(r"(\d+)\s*/\s*(\d+)")
_OF_RE = re.compile(r"(\d+)\s+of\s+(\d+)", re.IGNORECASE)
_PAGE_PARAM_RE = re.compile(r"[?&]page=(\d+)")

_PAGINATION_TEXT_SELECTOR = "div[class*='pagination'], span[class*='page'], div[class*='page']"
_PAGINATION_LINK_SELECTOR = "a[class*='pagination'], a[class*='page'], button[class*='page']"

# Paths inside the app-state block where a total page count may live.
TOTAL_PAGES_PATHS: tuple[tuple[str, ...], ...] = (
    ("props", "pageProps", "totalPages"),
    ("props", "pageProps", "searchResult", "totalPages"),
    ("props", "pageProps", "data", "totalPages"),
    ("props", "pageProps", "data", "searchResult", "totalPages"),
)


@dataclass
class ExtractedPage:
    """Page-agnostic intermediate record; the mapper turns it into entities."""

    json_ld: list[dict[str, Any]] = field(default_factory=list)
    app_state: dict[str, Any] | None = None
    app_state_source: str | None = None  # "structured" or "regex"
    total_pages: int = 0

    @property
    def empty(self) -> bool:
        return not self.json_ld and self.app_state is None


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def _preview(text: str, n: int = 200) -> str:
    return text if len(text) <= n else text[:n] + "..."


def dig(obj: Any, path: tuple[str, ...]) -> Any:
    """Follow *path* through nested dicts; None as soon as a step is missing."""
    cur = obj
    for key in path:
        if not isinstance(cur, dict) or key not in cur:
            return None
        cur = cur[key]
    return cur


def parse_json_ld(html: str, soup: BeautifulSoup | None = None) -> list[dict[str, Any]]:
    """Return every JSON-LD object on the page, flattening arrays and ``@graph``."""
    if not html or not html.strip():
        return []
    soup = soup if soup is not None else _soup(html)

    results: list[dict[str, Any]] = []
    scripts = soup.find_all("script", attrs={"type": "application/ld+json"})
    logger.debug("found %d JSON-LD script tags", len(scripts))
    for script in scripts:
        content = (script.string or script.get_text() or "").strip()
        if not content:
            continue
        try:
            data = json.loads(content)
        except ValueError as exc:
            logger.warning("skipping malformed JSON-LD block (%s): %s", exc, _preview(content))
            continue
        results.extend(_flatten_ld(data))
    return results


def _flatten_ld(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        out: list[dict[str, Any]] = []
        for item in data:
            out.extend(_flatten_ld(item))
        return out
    if isinstance(data, dict):
        graph = data.get("@graph")
        if isinstance(graph, list):
            return _flatten_ld(graph)
        return [data]
    return []


def parse_app_state(html: str, soup: BeautifulSoup | None = None) -> dict[str, Any] | None:
    if not html or not html.strip():
        return None
    soup = soup if soup is not None else _soup(html)
    script = soup.find("script", id=APP_STATE_SCRIPT_ID)
    if script is None:
        logger.debug("%s script tag not found", APP_STATE_SCRIPT_ID)
        return None
    content = (script.string or script.get_text() or "").strip()
    if not content:
        logger.warning("%s script tag is empty", APP_STATE_SCRIPT_ID)
        return None
    return try_parse_json(content)


def extract_script_content_by_id(html: str, script_id: str) -> str | None:
    """Regex lookup of a script body by id, for markup the HTML parser chokes on."""
    if not html or not script_id:
        return None
    pattern = r"<script[^>]*id\s*=\s*[\"']" + re.escape(script_id) + r"[\"'][^>]*>(.*?)</script>"
    m = re.search(pattern, html, re.DOTALL | re.IGNORECASE)
    if not m:
        return None
    return m.group(1).strip() or None


def try_parse_json(text: str) -> dict[str, Any] | None:
    if not text or not text.strip():
        return None
    try:
        data = json.loads(text)
    except ValueError as exc:
        logger.warning("failed to parse JSON (%s): %s", exc, _preview(text))
        return None
    if not isinstance(data, dict):
        return None
    return data


def parse_pagination(html: str, soup: BeautifulSoup | None = None, app_state: dict[str, Any] | None = None) -> int:
    """Total page count, or 0 when the page does not say.

    Sources in order: "x/y" or "x of y" text near pagination controls, the
    highest page number among pagination links, then ``totalPages`` in the
    app-state block.
    """
    if not html or not html.strip():
        return 0
    soup = soup if soup is not None else _soup(html)

    for el in soup.select(_PAGINATION_TEXT_SELECTOR):
        text = el.get_text(" ", strip=True)
        if not text:
            continue
        m = _X_OF_Y_RE.search(text) or _OF_RE.search(text)
        if m:
            return int(m.group(2))

    max_page = 0
    for link in soup.select(_PAGINATION_LINK_SELECTOR):
        text = link.get_text(strip=True)
        if text.isdigit():
            max_page = max(max_page, int(text))
        href = link.get("href") or ""
        m = _PAGE_PARAM_RE.search(href)
        if m:
            max_page = max(max_page, int(m.group(1)))
    if max_page > 0:
        return max_page

    state = app_state if app_state is not None else parse_app_state(html, soup)
    if state is not None:
        for path in TOTAL_PAGES_PATHS:
            val = dig(state, path)
            if isinstance(val, int) and not isinstance(val, bool) and val > 0:
                return val
            if isinstance(val, str) and val.isdigit():
                return int(val)
    return 0


def _run(name: str, fn: Callable[[], Any], default: Any) -> Any:
    try:
        return fn()
    except Exception:
        # A broken strategy must not take the others down with it.
        logger.exception("extraction strategy %r failed", name)
        return default


def extract(html: str) -> ExtractedPage:
    page = ExtractedPage()
    if not html or not html.strip():
        logger.warning("extract: empty HTML")
        return page

    soup = _run("html-parse", lambda: _soup(html), None)

    if soup is not None:
        page.json_ld = _run("json-ld", lambda: parse_json_ld(html, soup), [])
        page.app_state = _run("app-state", lambda: parse_app_state(html, soup), None)
        if page.app_state is not None:
            page.app_state_source = "structured"

    if page.app_state is None:
        raw = _run("app-state-regex", lambda: extract_script_content_by_id(html, APP_STATE_SCRIPT_ID), None)
        if raw:
            page.app_state = try_parse_json(raw)
            if page.app_state is not None:
                page.app_state_source = "regex"

    if soup is not None:
        page.total_pages = _run("pagination", lambda: parse_pagination(html, soup, page.app_state), 0)
    elif page.app_state is not None:
        for path in TOTAL_PAGES_PATHS:
            val = dig(page.app_state, path)
            if isinstance(val, int) and val > 0:
                page.total_pages = val
                break

    logger.debug(
        "extracted %d JSON-LD objects, app state=%s, total pages=%d",
        len(page.json_ld), page.app_state_source, page.total_pages,
    )
    return page
