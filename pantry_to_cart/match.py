from __future__ import annotations

import logging
import re

from .models import IngredientRequirement, PriceComparison, ProductListing, ProductSizeInfo, ScoredCandidate
from .query import tr_lower

logger = logging.getLogger(__name__)

_NUM = r"(\d+(?:[.,]\d+)?)"

# (pattern, grams per unit, unit label); first match wins.
_SIZE_PATTERNS = [
    (re.compile(_NUM + r"\s*(g|gr|gram)\b", re.IGNORECASE), 1.0, "g"),
    (re.compile(_NUM + r"\s*(kg|kilo)\b", re.IGNORECASE), 1000.0, "kg"),
    (re.compile(_NUM + r"\s*(ml)\b", re.IGNORECASE), 1.0, "ml"),
    (re.compile(_NUM + r"\s*(lt|litre|l)\b", re.IGNORECASE), 1000.0, "lt"),
]

_PACK_PATTERNS = [
    re.compile(r"(\d+)\s*['’]?\s*l[ıiuü]\b", re.IGNORECASE),
    re.compile(r"\bx\s*(\d+)\b", re.IGNORECASE),
    re.compile(r"\b(\d+)\s*x\b", re.IGNORECASE),
]


def _num(text: str) -> float:
    return float(text.replace(",", "."))


def parse_product_size(name: str | None) -> ProductSizeInfo:
    """Package size from a product name: "Süt 1 L", "Makarna 500 gr", "Yumurta 10'lu".

    A pack count multiplies the unit size ("200 ml x 6" is 1200 g).
    """
    if not name or not name.strip():
        return ProductSizeInfo()

    pack = 1
    for pattern in _PACK_PATTERNS:
        m = pattern.search(name)
        if m:
            count = int(m.group(1))
            if count > 0:
                pack = count
            break

    for pattern, factor, unit in _SIZE_PATTERNS:
        m = pattern.search(name)
        if m:
            size = _num(m.group(1)) * factor
            return ProductSizeInfo(size_in_grams=size * pack, unit=unit, pack_count=pack)

    if pack > 1:
        return ProductSizeInfo(unit="adet", pack_count=pack)
    return ProductSizeInfo()


_WORD_SPLIT_RE = re.compile(r"[\s\-_]+")


def name_similarity(a: str, b: str) -> float:
    """0..1: exact 1.0, containment 0.8, else share of overlapping words."""
    if not a or not b:
        return 0.0
    la, lb = tr_lower(a).strip(), tr_lower(b).strip()
    if la == lb:
        return 1.0
    if la in lb or lb in la:
        return 0.8
    wa = [w for w in _WORD_SPLIT_RE.split(la) if w]
    wb = [w for w in _WORD_SPLIT_RE.split(lb) if w]
    if not wa or not wb:
        return 0.0
    hits = sum(1 for w1 in wa if any(w1 in w2 or w2 in w1 for w2 in wb))
    return hits / max(len(wa), len(wb))


def quantity_fit_score(required_grams: float, size: ProductSizeInfo) -> float:
    if not size.known or required_grams <= 0:
        return 0.0
    ratio = size.size_in_grams / required_grams
    if 0.8 <= ratio <= 2.5:
        return 40.0
    if 0.5 <= ratio <= 4:
        return 30.0
    if 0.3 <= ratio <= 6:
        return 15.0
    if ratio > 6:
        return -20.0
    return -10.0


def economy_score(price: float, size: ProductSizeInfo) -> float:
    if size.known:
        per_kg = price / size.size_in_grams * 1000
        if per_kg < 20:
            return 30.0
        if per_kg < 50:
            return 25.0
        if per_kg < 100:
            return 15.0
        if per_kg < 200:
            return 5.0
        return -10.0
    if price < 30:
        return 25.0
    if price < 60:
        return 15.0
    if price < 100:
        return 5.0
    return -10.0


def discount_bonus(offer: PriceComparison) -> float:
    if offer.is_on_sale and offer.discount_percentage and offer.discount_percentage > 0:
        return min(20.0, offer.discount_percentage / 2.0)
    return 0.0


def price_adjustment(price: float) -> float:
    adj = 0.0
    if price > 300:
        adj -= 40
    elif price > 200:
        adj -= 25
    elif price > 150:
        adj -= 10
    if 10 <= price <= 80:
        adj += 10
    return adj


def score_offer(req: IngredientRequirement, offer: PriceComparison, size: ProductSizeInfo | None = None) -> float:
    size = size if size is not None else parse_product_size(offer.product_name)
    q = quantity_fit_score(req.quantity_in_grams, size)
    e = economy_score(offer.price, size)
    d = discount_bonus(offer)
    s = name_similarity(req.name, offer.product_name) * 10
    p = price_adjustment(offer.price)
    score = 100.0 + q + e + d + s + p
    logger.debug(
        "score %s @ %.2f = %.2f (qty %.0f, economy %.0f, discount %.1f, name %.1f, price %.0f)",
        offer.product_name, offer.price, score, q, e, d, s, p,
    )
    return score


def select_best_offer(req: IngredientRequirement, offers: list[PriceComparison]) -> ScoredCandidate | None:
    """Highest score wins; on a tie the earlier offer is kept."""
    best: ScoredCandidate | None = None
    for offer in offers:
        size = parse_product_size(offer.product_name)
        scored = ScoredCandidate(offer=offer, score=score_offer(req, offer, size), size_info=size)
        if best is None or scored.score > best.score:
            best = scored
    if best is not None:
        logger.info("best offer for %s: %s %.2f TL (score %.2f)", req.name, best.offer.store, best.offer.price, best.score)
    return best


def contains_excluded_keyword(name: str, keywords: tuple[str, ...] | list[str]) -> str | None:
    """Return the first keyword found in *name*, or None.

    Short keywords (three letters or fewer) must equal a whole word; longer
    ones match the start of a word, so "bar" rejects "Protein Bar" but not
    "Barilla" while "çikolata" also rejects "Çikolatalı".
    """
    words = re.findall(r"\w+", tr_lower(name))
    for kw in keywords:
        kw = tr_lower(kw.strip())
        if not kw:
            continue
        if " " in kw:
            if kw in " ".join(words):
                return kw
            continue
        for w in words:
            if w == kw or (len(kw) > 3 and w.startswith(kw)):
                return kw
    return None


def _significant_words(term: str) -> list[str]:
    return [w for w in re.findall(r"\w+", tr_lower(term)) if len(w) > 2]


def fallback_select(
    term: str,
    candidates: list[ProductListing],
    exclude_keywords: tuple[str, ...] | list[str],
) -> ProductListing | None:
    """Deterministic pick used when the assist service can't decide.

    Drops excluded products, keeps those naming the term or one of its
    significant words, and takes the cheapest. When filtering leaves nothing,
    the cheapest candidate overall is returned.
    """
    if not candidates:
        return None

    lower_term = tr_lower(term).strip()
    words = _significant_words(term)

    kept: list[ProductListing] = []
    for c in candidates:
        hit = contains_excluded_keyword(c.name, exclude_keywords)
        if hit:
            logger.debug("fallback: dropping %r (keyword %r)", c.name, hit)
            continue
        name = tr_lower(c.name)
        if (lower_term and lower_term in name) or any(w in name for w in words):
            kept.append(c)

    pool = kept or candidates
    if not kept:
        logger.info("fallback: nothing survived filtering for %r; using cheapest candidate", term)
    return min(pool, key=_price_key)


def _price_key(listing: ProductListing) -> float:
    # Listings without a known price sort last.
    return listing.price if listing.price > 0 else float("inf")
