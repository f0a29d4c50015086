"""Heuristics for "the site served us an interception page instead of content".

These rules are fragile by nature; bump RULES_VERSION whenever they change so
log lines can be tied back to the rule set that produced them.
"""
from __future__ import annotations

import json
import re
from typing import Callable

from .parser import APP_STATE_SCRIPT_ID, dig, extract_script_content_by_id

RULES_VERSION = "2"

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)

_CHALLENGE_TITLES = (
    "robot or human",
    "just a moment",
    "attention required",
    "access denied",
    "are you a robot",
)

_CHALLENGE_MARKERS = (
    "cf-challenge",
    "challenge-platform",
    "px-captcha",
    "g-recaptcha",
    "h-captcha",
)


def embedded_status_not_ok(html: str) -> bool:
    """The app-state block carries its own status code; anything but 200 means interception."""
    raw = extract_script_content_by_id(html, APP_STATE_SCRIPT_ID)
    if not raw:
        return False
    try:
        data = json.loads(raw)
    except ValueError:
        return False
    if not isinstance(data, dict):
        return False
    page_props = dig(data, ("props", "pageProps"))
    if not isinstance(page_props, dict) or "statusCode" not in page_props:
        return False
    try:
        return int(page_props["statusCode"]) != 200
    except (TypeError, ValueError):
        return False


def challenge_title(html: str) -> bool:
    m = _TITLE_RE.search(html)
    if not m:
        return False
    title = m.group(1).strip().lower()
    return any(t in title for t in _CHALLENGE_TITLES)


def challenge_markup(html: str) -> bool:
    # Only small pages: real product pages can embed captcha widgets in footers.
    if len(html) > 50_000:
        return False
    lower = html.lower()
    return any(m in lower for m in _CHALLENGE_MARKERS)


RULES: tuple[tuple[str, Callable[[str], bool]], ...] = (
    ("embedded-status", embedded_status_not_ok),
    ("challenge-title", challenge_title),
    ("challenge-markup", challenge_markup),
)


def matched_rule(html: str) -> str | None:
    if not html:
        return None
    for name, rule in RULES:
        if rule(html):
            return name
    return None


def is_bot_blocked(html: str) -> bool:
    return matched_rule(html) is not None
