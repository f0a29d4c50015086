from pantry_to_cart.config import DEFAULT_EXCLUDE_KEYWORDS
from pantry_to_cart.match import (
    contains_excluded_keyword,
    fallback_select,
    name_similarity,
    parse_product_size,
    score_offer,
    select_best_offer,
)
from pantry_to_cart.models import IngredientRequirement, PriceComparison, ProductListing, ProductSizeInfo


def _req(name="süt", grams=1000.0):
    return IngredientRequirement(original_text=name, name=name, quantity=1, unit="lt", quantity_in_grams=grams)


def _offer(name="Süt 1 L", price=35.0, store="Migros", discount=None):
    return PriceComparison(
        store=store, price=price, product_name=name,
        is_on_sale=bool(discount), discount_percentage=discount,
    )


def _listing(name, price, pid=None):
    return ProductListing(id=pid or name, name=name, price=price, product_url=f"https://x/{pid or name}")


def test_parse_size_units():
    assert parse_product_size("Makarna 500 gr").size_in_grams == 500
    assert parse_product_size("Un 2 kg").size_in_grams == 2000
    assert parse_product_size("Süt 1 L").size_in_grams == 1000
    assert parse_product_size("Süt 1,5 lt").size_in_grams == 1500
    assert parse_product_size("Krema 200 ml").size_in_grams == 200
    assert parse_product_size("Pirinç 2.5kg").unit == "kg"


def test_parse_size_pack_counts():
    eggs = parse_product_size("Yumurta 10'lu")
    assert eggs.pack_count == 10
    assert eggs.unit == "adet"
    assert not eggs.known

    multi = parse_product_size("Ayran 200 ml x6")
    assert multi.pack_count == 6
    assert multi.size_in_grams == 1200


def test_parse_size_unknown():
    assert parse_product_size("Maydanoz") == ProductSizeInfo()
    assert parse_product_size(None) == ProductSizeInfo()


def test_name_similarity():
    assert name_similarity("süt", "Süt") == 1.0
    assert name_similarity("süt", "Pınar Süt 1 L") == 0.8
    assert name_similarity("tam yağlı süt", "yağlı yoğurt kova") == 1 / 3
    assert name_similarity("bal", "") == 0.0


def test_higher_discount_never_scores_lower():
    req = _req()
    scores = [score_offer(req, _offer(discount=d)) for d in (None, 5, 10, 30, 40, 60, 90)]
    assert scores == sorted(scores)


def test_quantity_fit_boundary():
    req = _req(grams=1000)
    at_080 = score_offer(req, _offer("Süt 800 ml"))
    at_079 = score_offer(req, _offer("Süt 790 ml"))
    assert at_080 >= at_079


def test_oversized_package_scores_below_band():
    req = _req(grams=1000)
    in_band = score_offer(req, _offer("Süt 2 L", price=60))
    wasteful = score_offer(req, _offer("Süt 7 L", price=60))
    assert wasteful < in_band


def test_absolute_price_penalty():
    req = _req(name="bal", grams=850)
    cheap = score_offer(req, _offer("Bal 850 g", price=140))
    pricey = score_offer(req, _offer("Bal 850 g", price=310))
    assert pricey < cheap


def test_select_best_offer_ties_keep_first():
    offers = [_offer(store="A"), _offer(store="B"), _offer(price=500, store="C")]
    best = select_best_offer(_req(), offers)
    assert best.offer.store == "A"
    assert best.size_info.size_in_grams == 1000
    assert select_best_offer(_req(), []) is None


def test_excluded_keywords_match_word_starts():
    assert contains_excluded_keyword("Çikolatalı Gofret", DEFAULT_EXCLUDE_KEYWORDS) == "çikolata"
    assert contains_excluded_keyword("Protein Bar 40 g", DEFAULT_EXCLUDE_KEYWORDS) == "bar"
    assert contains_excluded_keyword("Barilla Spagetti", DEFAULT_EXCLUDE_KEYWORDS) is None
    assert contains_excluded_keyword("Nivea Vücut Sütü", DEFAULT_EXCLUDE_KEYWORDS) == "vücut"


def test_fallback_prefers_cheapest_relevant():
    candidates = [
        _listing("Pirinç Patlağı Çikolatalı", 9.0),
        _listing("Tavuk Aromalı Cips", 12.0),
        _listing("Baldo Pirinç 1 kg", 55.0),
        _listing("Osmancık Pirinç 1 kg", 45.0),
    ]
    chosen = fallback_select("pirinç", candidates, DEFAULT_EXCLUDE_KEYWORDS)
    assert chosen.name == "Osmancık Pirinç 1 kg"


def test_fallback_uses_significant_words():
    candidates = [_listing("Sızma Zeytinyağı 1 L", 300.0), _listing("Ayçiçek Yağı 1 L", 80.0)]
    chosen = fallback_select("sızma zeytinyağı", candidates, DEFAULT_EXCLUDE_KEYWORDS)
    assert chosen.name == "Sızma Zeytinyağı 1 L"


def test_fallback_cheapest_overall_when_nothing_survives():
    candidates = [_listing("Gofret", 5.0), _listing("Kraker", 3.0)]
    assert fallback_select("süt", candidates, DEFAULT_EXCLUDE_KEYWORDS).name == "Kraker"
    assert fallback_select("süt", [], DEFAULT_EXCLUDE_KEYWORDS) is None
