from dataclasses import replace

import pytest

from pantry_to_cart.assist import AssistUnavailable
from pantry_to_cart.cache import FileCache
from pantry_to_cart.cimri import CimriClient, build_client
from pantry_to_cart.config import Config, ScraperOptions
from pantry_to_cart.fetch import Fetcher, RateLimiter
from pantry_to_cart.models import FetchResult, MarketOffer, MatchState, ProductDetail, SOURCE_DIRECT
from pantry_to_cart.pipeline import PriceFinder


class FailingAssist:
    def __init__(self):
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        raise AssistUnavailable("down")


class ScriptedAssist:
    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        return self.replies.pop(0)


class PageFetcher:
    """Serves canned HTML by URL substring; counts every fetch."""

    def __init__(self, pages):
        self.pages = pages
        self.urls = []

    def fetch(self, url):
        self.urls.append(url)
        body = ""
        for needle, html in self.pages.items():
            if needle in url:
                body = html
                break
        return FetchResult(url=url, raw_body=body, fetched_at=0.0, source_method=SOURCE_DIRECT)


@pytest.fixture
def milk_client(tmp_path, page, search_state, milk_products):
    detail_state = {"props": {"pageProps": {"product": {
        "name": "Süt 1 L",
        "offers": [
            {"merchantName": "Migros", "price": 36.5},
            {"merchantName": "A101", "price": 35.0},
            {"merchantName": "Şok", "price": 0},
        ],
    }}}}
    fetcher = PageFetcher({
        "arama?q=": page(app_state=search_state(milk_products)),
        "/urun/pinar-sut-4": page(app_state=detail_state),
    })
    client = CimriClient(ScraperOptions(), fetcher, FileCache(tmp_path / "pages"))
    return client, fetcher


def test_milk_scenario_with_failing_assist(milk_client):
    client, fetcher = milk_client
    assist = FailingAssist()
    finder = PriceFinder(client, assist=assist)

    result = finder.find_best_match("Süt", "1L")

    assert result.is_valid
    assert result.state == MatchState.SELECTED
    assert result.decided_by == "fallback"
    assert result.chosen_listing.name == "Süt 1 L"
    assert result.chosen_listing.price == 35.0
    assert result.expanded.expanded_term == "Süt"
    assert len(assist.prompts) == 2
    assert "sort=price-asc" in fetcher.urls[0]


def test_milk_scenario_never_picks_body_lotion_even_if_assist_does(milk_client):
    client, _ = milk_client
    assist = ScriptedAssist("süt 1 lt", '{"selectedIndex": 1, "reason": "ucuz", "isRelevant": false}')
    result = PriceFinder(client, assist=assist).find_best_match("Süt", "1L")
    assert result.chosen_listing.name == "Süt 1 L"
    assert "Vücut" not in result.chosen_listing.name


def test_assist_choice_is_used(milk_client):
    client, _ = milk_client
    reply = 'Tabii! İşte sonuç: {"selectedIndex": 5, "reason": "tam yağlı {istenen}", "isRelevant": true} umarım yardımcı olur'
    assist = ScriptedAssist("x" * 150, reply)
    result = PriceFinder(client, assist=assist).find_best_match("Süt")
    assert result.decided_by == "assist"
    assert result.chosen_listing.name == "Tam Yağlı Süt 1 L"
    assert result.reason == "tam yağlı {istenen}"
    # Oversized expansion is discarded.
    assert result.expanded.expanded_term == "Süt"


def test_out_of_range_index_falls_back(milk_client):
    client, _ = milk_client
    assist = ScriptedAssist("süt", '{"selectedIndex": 9, "isRelevant": true}')
    result = PriceFinder(client, assist=assist).find_best_match("süt")
    assert result.decided_by == "fallback"
    assert result.chosen_listing.price == 35.0


def test_no_results_is_no_match(tmp_path, page, search_state):
    fetcher = PageFetcher({"arama": page(app_state=search_state([]))})
    client = CimriClient(ScraperOptions(), fetcher, FileCache(tmp_path))
    result = PriceFinder(client).find_best_match("ejder meyvesi")
    assert result.chosen_listing is None
    assert not result.is_valid
    assert result.state == MatchState.NO_MATCH
    assert result.reason == "no search results"


def test_transport_failure_is_distinguishable(tmp_path):
    client = CimriClient(ScraperOptions(), PageFetcher({}), FileCache(tmp_path))
    result = PriceFinder(client).find_best_match("süt")
    assert result.chosen_listing is None
    assert result.reason == "search failed"


def test_empty_name_is_rejected(milk_client):
    client, _ = milk_client
    with pytest.raises(ValueError):
        PriceFinder(client).find_best_match("  ")
    with pytest.raises(ValueError):
        PriceFinder(client).compare_prices("")


def test_find_best_offer_uses_detail_offers(milk_client):
    client, _ = milk_client
    found = PriceFinder(client).find_best_offer("Süt", "1L")
    assert found.listing.id == "pinar-sut-4"
    assert [(o.store, o.price) for o in found.offers] == [("A101", 35.0), ("Migros", 36.5)]
    assert found.best.store == "A101"


def test_find_best_offer_none_when_nothing_found(tmp_path):
    client = CimriClient(ScraperOptions(), PageFetcher({}), FileCache(tmp_path))
    assert PriceFinder(client).find_best_offer("süt") is None


def test_offers_fall_back_to_listing_without_detail(tmp_path, page, search_state, product_factory):
    fetcher = PageFetcher({"arama": page(app_state=search_state([product_factory("un-1", "Un 1 kg", 29.9)]))})
    client = CimriClient(ScraperOptions(), fetcher, FileCache(tmp_path))
    found = PriceFinder(client).find_best_offer("un")
    assert [(o.store, o.price, o.product_name) for o in found.offers] == [("Migros", 29.9, "Un 1 kg")]


def test_compare_prices_is_memoized(milk_client, tmp_path):
    client, fetcher = milk_client
    memo = FileCache(tmp_path / "prices")
    finder = PriceFinder(client, price_cache=memo)

    first = finder.compare_prices("Süt")
    calls = len(fetcher.urls)
    second = finder.compare_prices("SÜT ")

    assert first == second
    assert [o.price for o in first] == [35.0, 36.5]
    assert len(fetcher.urls) == calls


def test_compare_prices_caps_offer_count(tmp_path, page, search_state, product_factory):
    offers = [{"merchantName": f"M{i}", "price": 100 - i} for i in range(15)]
    fetcher = PageFetcher({
        "arama": page(app_state=search_state([product_factory("bal-1", "Bal 850 g", 85.0)])),
        "/urun/bal-1": page(app_state={"props": {"pageProps": {"product": {"name": "Bal 850 g", "offers": offers}}}}),
    })
    client = CimriClient(ScraperOptions(), fetcher, FileCache(tmp_path))
    result = PriceFinder(client).compare_prices("bal")
    assert len(result) == 10
    assert result[0].price == 86


def test_search_contract(tmp_path):
    client = CimriClient(ScraperOptions(), PageFetcher({}), FileCache(tmp_path))
    with pytest.raises(ValueError):
        client.search("")
    with pytest.raises(ValueError):
        client.search("süt", page=0)
    with pytest.raises(ValueError):
        client.get_product_detail(" ")
    assert client.get_product_detail("missing") is None


def test_search_pages_are_cached(tmp_path, page, search_state, milk_products):
    fetcher = PageFetcher({"arama": page(app_state=search_state(milk_products, total_pages=3))})
    client = CimriClient(ScraperOptions(), fetcher, FileCache(tmp_path))
    first = client.search("süt", page=2)
    second = client.search("süt", page=2)
    assert first == second
    assert first.total_pages == 3
    assert first.current_page == 2
    assert len(fetcher.urls) == 1


def test_real_fetcher_wiring(tmp_path, page, search_state, milk_products):
    class Session:
        def get(self, url, headers=None, timeout=None):
            class R:
                status_code = 200
                text = page(app_state=search_state(milk_products))
            return R()

    fetcher = Fetcher(rate_limiter=RateLimiter(0, 0), session=Session())
    client = CimriClient(ScraperOptions(), fetcher, FileCache(tmp_path))
    assert len(client.search("süt").products) == 5


def test_non_finite_index_falls_back(milk_client):
    client, _ = milk_client
    assist = ScriptedAssist("süt", '{"selectedIndex": Infinity, "isRelevant": true}')
    result = PriceFinder(client, assist=assist).find_best_match("süt")
    assert result.decided_by == "fallback"
    assert result.chosen_listing.price == 35.0


def test_browser_fallback_fits_in_fetch_timeout(tmp_path):
    opts = replace(ScraperOptions(), cache_directory=str(tmp_path), request_timeout_seconds=20)
    renderer = build_client(Config(scraper=opts)).fetcher.renderer
    assert renderer.nav_timeout_ms + renderer.settle_ms <= 20_000
    assert renderer.settle_ms > 0
