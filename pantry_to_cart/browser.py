from __future__ import annotations

import logging
from dataclasses import dataclass

from playwright.sync_api import sync_playwright

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
]

STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => ['tr-TR', 'tr'] });
window.chrome = { runtime: {} };
"""


def browserless_ws_endpoint(*, base_ws_url: str, token: str) -> str:
    """Compose a Browserless CDP websocket endpoint.

    Accepts either:
    - ws://host:port
    - http://host:port

    Returns:
    - ws://host:port?token=...
    """
    base = base_ws_url.strip()
    if base.startswith("http://"):
        base = "ws://" + base.removeprefix("http://")
    if base.startswith("https://"):
        base = "wss://" + base.removeprefix("https://")

    if "?" in base:
        # If caller already provided query params, append.
        if "token=" in base:
            return base
        return base + "&token=" + token

    return base + "?token=" + token


@dataclass(frozen=True)
class BrowserRenderer:
    """Loads a page in headless Chromium and returns the DOM after scripts ran.

    With *ws_endpoint* set the page is rendered by a remote Browserless
    instance over CDP; otherwise a local Chromium is launched per call.
    Playwright errors (including navigation timeouts) propagate to the caller.
    """

    ws_endpoint: str | None = None
    user_agent: str = DEFAULT_USER_AGENT
    nav_timeout_ms: int = 45_000
    settle_ms: int = 3_000

    def __call__(self, url: str) -> str:
        return self.render(url)

    def render(self, url: str) -> str:
        logger.info("rendering %s in headless browser", url)
        with sync_playwright() as p:
            if self.ws_endpoint:
                browser = p.chromium.connect_over_cdp(self.ws_endpoint)
            else:
                browser = p.chromium.launch(headless=True, args=LAUNCH_ARGS)
            try:
                context = browser.new_context(
                    user_agent=self.user_agent,
                    locale="tr-TR",
                    timezone_id="Europe/Istanbul",
                    viewport={"width": 1920, "height": 1080},
                    ignore_https_errors=True,
                    extra_http_headers={
                        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
                        "Accept-Language": "tr-TR,tr;q=0.9",
                    },
                )
                context.add_init_script(STEALTH_SCRIPT)
                page = context.new_page()
                page.goto(url, wait_until="load", timeout=self.nav_timeout_ms)
                page.wait_for_timeout(self.settle_ms)
                html = page.content()
            finally:
                browser.close()

        logger.info("rendered %s, %d bytes", url, len(html))
        return html
