from __future__ import annotations

import logging
import random
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

import requests

from .botcheck import RULES_VERSION, matched_rule
from .models import SOURCE_BROWSER, SOURCE_DIRECT, FetchResult

logger = logging.getLogger(__name__)

RATE_LIMITED_WAIT_S = 5.0

USER_AGENTS = [
    # Chrome on Windows / Mac / Linux
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    # Firefox
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0",
    # Safari
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1",
    # Edge
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
]

BASE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": "tr-TR,tr;q=0.9,en-US;q=0.8,en;q=0.7",
    "Accept-Encoding": "gzip, deflate",
    "Cache-Control": "max-age=0",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}


def _major_version(user_agent: str, prefix: str) -> str:
    start = user_agent.find(prefix)
    if start == -1:
        return "120"
    start += len(prefix)
    end = user_agent.find(".", start)
    if end == -1:
        return "120"
    return user_agent[start:end]


def sec_ch_ua(user_agent: str) -> str | None:
    """Client-hint brand list matching *user_agent*; None for Firefox and Safari."""
    if "Edg/" in user_agent:
        v = _major_version(user_agent, "Edg/")
        return f'"Microsoft Edge";v="{v}", "Chromium";v="{v}", "Not=A?Brand";v="99"'
    if "Chrome/" in user_agent:
        v = _major_version(user_agent, "Chrome/")
        return f'"Google Chrome";v="{v}", "Chromium";v="{v}", "Not=A?Brand";v="99"'
    return None


def _platform(user_agent: str) -> str:
    if "Windows" in user_agent:
        return '"Windows"'
    if "iPhone" in user_agent or "iPad" in user_agent:
        return '"iOS"'
    if "Macintosh" in user_agent:
        return '"macOS"'
    return '"Linux"'


class IdentityPool:
    """Picks a random browser identity and the headers that go with it."""

    def __init__(
        self,
        user_agents: list[str] | None = None,
        *,
        referer: str | None = None,
        rng: random.Random | None = None,
    ):
        self.user_agents = list(user_agents or USER_AGENTS)
        if not self.user_agents:
            raise ValueError("user agent pool is empty")
        self.referer = referer
        self._rng = rng or random.Random()

    def random_user_agent(self) -> str:
        return self._rng.choice(self.user_agents)

    def headers_for(self, url: str) -> dict[str, str]:
        ua = self.random_user_agent()
        headers = dict(BASE_HEADERS)
        headers["User-Agent"] = ua
        brands = sec_ch_ua(ua)
        if brands:
            headers["sec-ch-ua"] = brands
            headers["sec-ch-ua-mobile"] = "?1" if "Mobile" in ua else "?0"
            headers["sec-ch-ua-platform"] = _platform(ua)
        if self.referer and "?" in url:
            headers["Referer"] = self.referer
            headers["Sec-Fetch-Site"] = "same-origin"
        return headers


class RateLimiter:
    """Process-wide gate: one outbound request at a time, spaced by a random gap.

    Each gap is drawn uniformly from ``[min_delay_s, max_delay_s]`` and measured
    from the end of the previous request. The lock is released on every exit
    path, including exceptions and KeyboardInterrupt.
    """

    def __init__(
        self,
        min_delay_s: float = 1.0,
        max_delay_s: float = 3.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ):
        if min_delay_s < 0 or max_delay_s < min_delay_s:
            raise ValueError("invalid delay window")
        self.min_delay_s = min_delay_s
        self.max_delay_s = max_delay_s
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._last_done: float | None = None
        self._gap = 0.0

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def slot(self) -> Iterator[None]:
        with self._lock:
            if self._last_done is not None:
                wait = self._gap - (self._clock() - self._last_done)
                if wait > 0:
                    logger.debug("rate limit: waiting %.0fms", wait * 1000)
                    self._sleep(wait)
            try:
                yield
            finally:
                self._last_done = self._clock()
                self._gap = self._rng.uniform(self.min_delay_s, self.max_delay_s)


class Fetcher:
    """GET with rate limiting, identity rotation, retries and a browser fallback.

    ``fetch`` never raises for network or HTTP failures: when everything has
    been tried the result carries an empty body.
    """

    def __init__(
        self,
        *,
        rate_limiter: RateLimiter,
        identities: IdentityPool | None = None,
        session: requests.Session | None = None,
        renderer: Callable[[str], str] | None = None,
        max_retries: int = 3,
        retry_delay_s: float = 2.0,
        timeout_s: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.rate_limiter = rate_limiter
        self.identities = identities or IdentityPool()
        self.session = session or requests.Session()
        self.renderer = renderer
        self.max_retries = max_retries
        self.retry_delay_s = retry_delay_s
        self.timeout_s = timeout_s
        self._sleep = sleep
        self._clock = clock

    def backoff(self, attempt: int, status: int | None = None) -> float:
        if status == 429:
            return RATE_LIMITED_WAIT_S
        return (2 ** attempt) * self.retry_delay_s

    def fetch(self, url: str) -> FetchResult:
        for attempt in range(self.max_retries + 1):
            status: int | None = None
            try:
                with self.rate_limiter.slot():
                    resp = self.session.get(url, headers=self.identities.headers_for(url), timeout=self.timeout_s)
            except requests.RequestException as exc:
                logger.warning("request to %s failed (attempt %d/%d): %s", url, attempt + 1, self.max_retries + 1, exc)
            else:
                status = resp.status_code
                if status == 404:
                    logger.info("%s returned 404, not retrying", url)
                    return self._result(url, "", SOURCE_DIRECT)
                if 200 <= status < 300:
                    rule = matched_rule(resp.text)
                    if rule is None:
                        logger.info("fetched %s (%d bytes)", url, len(resp.text))
                        return self._result(url, resp.text, SOURCE_DIRECT)
                    logger.warning("bot interception on %s (rule %s, rules v%s)", url, rule, RULES_VERSION)
                    break
                logger.warning("%s returned HTTP %d (attempt %d/%d)", url, status, attempt + 1, self.max_retries + 1)

            if attempt < self.max_retries:
                delay = self.backoff(attempt + 1, status)
                logger.info("retrying %s in %.1fs", url, delay)
                self._sleep(delay)
        else:
            logger.error("giving up on direct fetch of %s after %d attempts", url, self.max_retries + 1)

        return self._render(url)

    def _render(self, url: str) -> FetchResult:
        if self.renderer is None:
            return self._result(url, "", SOURCE_DIRECT)
        try:
            with self.rate_limiter.slot():
                html = self.renderer(url)
        except Exception as exc:
            # Playwright raises its own error types; every one of them means "no page".
            logger.error("browser fallback for %s failed: %s", url, exc)
            return self._result(url, "", SOURCE_BROWSER)

        rule = matched_rule(html or "")
        if rule is not None:
            logger.error("browser fallback for %s still intercepted (rule %s)", url, rule)
            return self._result(url, "", SOURCE_BROWSER)
        return self._result(url, html or "", SOURCE_BROWSER)

    def _result(self, url: str, body: str, source: str) -> FetchResult:
        return FetchResult(url=url, raw_body=body, fetched_at=self._clock(), source_method=source)
