from __future__ import annotations

import os
import json
from dataclasses import dataclass, field
from urllib.request import Request, urlopen
from urllib.parse import urlencode


# Keys that may live in Infisical instead of the process environment.
SECRET_KEYS = [
    "ASSIST_API_KEY",
    "BROWSERLESS_URL",
    "BROWSERLESS_TOKEN",
]

ENV_KEYS = [
    "PANTRY_BASE_URL",
    "PANTRY_DETAIL_URL",
    "PANTRY_SITE_ROOT",
    "PANTRY_CACHE_DIR",
    "PANTRY_CACHE_TTL_MINUTES",
    "PANTRY_MAX_CACHE_FILES",
    "PANTRY_PRICE_CACHE_DIR",
    "PANTRY_PRICE_CACHE_MINUTES",
    "PANTRY_MAX_RETRIES",
    "PANTRY_RETRY_DELAY_SECONDS",
    "PANTRY_MIN_DELAY_MS",
    "PANTRY_MAX_DELAY_MS",
    "PANTRY_REQUEST_TIMEOUT_SECONDS",
    "PANTRY_EXCLUDE_KEYWORDS",
    "ASSIST_BASE_URL",
    "ASSIST_MODEL",
    "ASSIST_TIMEOUT_SECONDS",
    *SECRET_KEYS,
]

# Snack, confectionery, cosmetic, cleaning and tableware terms. A candidate whose
# name contains one of these is never a grocery ingredient.
DEFAULT_EXCLUDE_KEYWORDS = (
    "çikolata",
    "gofret",
    "bisküvi",
    "cips",
    "kraker",
    "aromalı",
    "patlak",
    "bar",
    "kozmetik",
    "vücut",
    "cilt",
    "saç",
    "temizlik",
    "tabak",
    "kase",
    "bardak",
    "kaşık",
)

# Things every kitchen already has; list runs skip them.
DEFAULT_PANTRY_STAPLES = (
    "su",
    "içme suyu",
    "sıcak su",
    "soğuk su",
    "kaynar su",
    "tuz",
    "sofra tuzu",
    "iyotlu tuz",
    "karabiber",
    "kara biber",
    "toz karabiber",
    "sirke",
    "elma sirkesi",
)


@dataclass(frozen=True)
class ScraperOptions:
    base_url: str = "https://www.cimri.com/market/arama"
    detail_url_template: str = "https://www.cimri.com/urun/{product_id}"
    site_root: str = "https://www.cimri.com"
    cache_directory: str = "./cache/cimri"
    cache_duration_minutes: int = 60
    max_cache_files: int = 500
    price_cache_directory: str = "./cache/prices"
    price_cache_minutes: int = 30
    max_retries: int = 3
    retry_delay_seconds: float = 2.0
    min_delay_ms: int = 1000
    max_delay_ms: int = 3000
    request_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class AssistOptions:
    base_url: str = "https://api.groq.com/openai/v1"
    api_key: str | None = None
    model: str = "llama-3.1-70b-versatile"
    timeout_seconds: float = 15.0

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class MatchingRules:
    exclude_keywords: tuple[str, ...] = DEFAULT_EXCLUDE_KEYWORDS
    pantry_staples: tuple[str, ...] = DEFAULT_PANTRY_STAPLES
    candidate_limit: int = 5
    max_offers: int = 10


@dataclass(frozen=True)
class Config:
    scraper: ScraperOptions = field(default_factory=ScraperOptions)
    assist: AssistOptions = field(default_factory=AssistOptions)
    rules: MatchingRules = field(default_factory=MatchingRules)
    browserless_url: str | None = None
    browserless_token: str | None = None

    @staticmethod
    def load(*, env: str | None = None, environ: dict[str, str] | None = None) -> "Config":
        """Build the config from environment variables.

        When ``INFISICAL_CLIENT_ID`` is set, secrets listed in SECRET_KEYS are
        fetched from Infisical for *env* and take precedence over the
        environment.
        """
        values = dict(os.environ if environ is None else environ)

        if env is not None or values.get("INFISICAL_CLIENT_ID"):
            secrets = load_infisical_secrets(env=env or "dev", environ=values)
            for k in SECRET_KEYS:
                if secrets.get(k):
                    values[k] = secrets[k]

        return Config.from_mapping(values)

    @staticmethod
    def from_mapping(values: dict[str, str]) -> "Config":
        d = ScraperOptions()
        scraper = ScraperOptions(
            base_url=_str(values, "PANTRY_BASE_URL", d.base_url).rstrip("/"),
            detail_url_template=_str(values, "PANTRY_DETAIL_URL", d.detail_url_template),
            site_root=_str(values, "PANTRY_SITE_ROOT", d.site_root).rstrip("/"),
            cache_directory=_str(values, "PANTRY_CACHE_DIR", d.cache_directory),
            cache_duration_minutes=_int(values, "PANTRY_CACHE_TTL_MINUTES", d.cache_duration_minutes),
            max_cache_files=_int(values, "PANTRY_MAX_CACHE_FILES", d.max_cache_files),
            price_cache_directory=_str(values, "PANTRY_PRICE_CACHE_DIR", d.price_cache_directory),
            price_cache_minutes=_int(values, "PANTRY_PRICE_CACHE_MINUTES", d.price_cache_minutes),
            max_retries=_int(values, "PANTRY_MAX_RETRIES", d.max_retries),
            retry_delay_seconds=_float(values, "PANTRY_RETRY_DELAY_SECONDS", d.retry_delay_seconds),
            min_delay_ms=_int(values, "PANTRY_MIN_DELAY_MS", d.min_delay_ms),
            max_delay_ms=_int(values, "PANTRY_MAX_DELAY_MS", d.max_delay_ms),
            request_timeout_seconds=_float(values, "PANTRY_REQUEST_TIMEOUT_SECONDS", d.request_timeout_seconds),
        )
        if "{product_id}" not in scraper.detail_url_template:
            raise RuntimeError("PANTRY_DETAIL_URL must contain a {product_id} placeholder")
        if scraper.min_delay_ms > scraper.max_delay_ms:
            raise RuntimeError("PANTRY_MIN_DELAY_MS must not exceed PANTRY_MAX_DELAY_MS")

        a = AssistOptions()
        assist = AssistOptions(
            base_url=_str(values, "ASSIST_BASE_URL", a.base_url).rstrip("/"),
            api_key=values.get("ASSIST_API_KEY") or None,
            model=_str(values, "ASSIST_MODEL", a.model),
            timeout_seconds=_float(values, "ASSIST_TIMEOUT_SECONDS", a.timeout_seconds),
        )

        rules = MatchingRules()
        raw_keywords = values.get("PANTRY_EXCLUDE_KEYWORDS")
        if raw_keywords:
            keywords = tuple(k.strip().lower() for k in raw_keywords.split(",") if k.strip())
            rules = MatchingRules(exclude_keywords=keywords)

        return Config(
            scraper=scraper,
            assist=assist,
            rules=rules,
            browserless_url=values.get("BROWSERLESS_URL") or None,
            browserless_token=values.get("BROWSERLESS_TOKEN") or None,
        )


def _str(values: dict[str, str], key: str, default: str) -> str:
    val = values.get(key)
    if val is None or not val.strip():
        return default
    return val.strip()


def _int(values: dict[str, str], key: str, default: int) -> int:
    val = values.get(key)
    if val is None or not val.strip():
        return default
    try:
        out = int(val)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer, got {val!r}")
    if out < 0:
        raise RuntimeError(f"{key} must not be negative")
    return out


def _float(values: dict[str, str], key: str, default: float) -> float:
    val = values.get(key)
    if val is None or not val.strip():
        return default
    try:
        out = float(val)
    except ValueError:
        raise RuntimeError(f"{key} must be a number, got {val!r}")
    if out < 0:
        raise RuntimeError(f"{key} must not be negative")
    return out


def load_infisical_secrets(*, env: str = "dev", environ: dict[str, str] | None = None) -> dict[str, str]:
    values = os.environ if environ is None else environ
    base = values.get("INFISICAL_URL", "").rstrip("/")
    if not base:
        raise RuntimeError("INFISICAL_URL is not set")
    token = _infisical_login(
        base,
        client_id=values.get("INFISICAL_CLIENT_ID", ""),
        client_secret=values.get("INFISICAL_CLIENT_SECRET", ""),
    )
    return _infisical_list_secrets(base, token, project_id=values.get("INFISICAL_PROJECT_ID", ""), env=env)


def _infisical_login(base: str, *, client_id: str, client_secret: str) -> str:
    """Get an access token via Universal Auth."""
    url = f"{base}/api/v1/auth/universal-auth/login"
    body = json.dumps({
        "clientId": client_id,
        "clientSecret": client_secret,
    }).encode()
    req = Request(url, data=body, headers={"Content-Type": "application/json"}, method="POST")
    with urlopen(req, timeout=15) as resp:
        data = json.loads(resp.read())
    return data["accessToken"]


def _infisical_list_secrets(base: str, token: str, *, project_id: str, env: str = "dev") -> dict[str, str]:
    """List all secrets from Infisical for the given environment."""
    params = urlencode({
        "projectId": project_id,
        "environment": env,
        "secretPath": "/",
    })
    url = f"{base}/api/v4/secrets?{params}"
    req = Request(url, headers={"Authorization": f"Bearer {token}"}, method="GET")
    with urlopen(req, timeout=15) as resp:
        data = json.loads(resp.read())

    secrets: dict[str, str] = {}
    for s in data.get("secrets", []):
        val = s.get("secretValue")
        if val and val.strip() not in {"PLACEHOLDER", "MASKED"}:
            secrets[s["secretKey"]] = val
    return secrets
