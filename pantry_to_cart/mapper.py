"""Turn extracted page records into listings and product details.

Listings need a name and a resolvable product URL; offers and price history
points need a strictly positive price. Anything else missing is tolerated.
"""
from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Iterable

from .models import MarketOffer, PricePoint, ProductDetail, ProductListing, SpecGroup, SpecItem
from .parser import ExtractedPage, dig

logger = logging.getLogger(__name__)

# Where a search page's app-state block keeps its product array, most common first.
PRODUCT_LIST_PATHS: tuple[tuple[str, ...], ...] = (
    ("props", "pageProps", "products"),
    ("props", "pageProps", "searchResult", "products"),
    ("props", "pageProps", "data", "products"),
    ("props", "pageProps", "data", "searchResult", "products"),
    ("props", "pageProps", "data", "data", "products"),
    ("props", "pageProps", "data", "data", "searchResult", "products"),
)

# Where a detail page's app-state block keeps the product object.
DETAIL_PRODUCT_PATHS: tuple[tuple[str, ...], ...] = (
    ("props", "pageProps", "product"),
    ("props", "pageProps", "productDetail"),
    ("props", "pageProps", "data", "product"),
)

_NUMBER_RE = re.compile(r"[^\d.,]")


def parse_price(value: Any) -> float | None:
    """Accept numbers and Turkish or English formatted strings ("1.299,90 TL", "12.5")."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None
    cleaned = _NUMBER_RE.sub("", value)
    if not cleaned:
        return None
    if "." in cleaned and "," in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        cleaned = cleaned.replace(",", ".")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")
    try:
        return float(cleaned)
    except ValueError:
        return None


def _positive(value: Any) -> float | None:
    p = parse_price(value)
    return p if p is not None and p > 0 else None


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _name_of(value: Any) -> str | None:
    """``"X"`` or ``{"name": "X"}``."""
    if isinstance(value, dict):
        return _text(value.get("name"))
    return _text(value)


def _first(obj: dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in obj and obj[k] not in (None, ""):
            return obj[k]
    return None


def absolutize(url: str | None, site_root: str) -> str | None:
    if not url:
        return None
    if url.startswith("http://") or url.startswith("https://"):
        return url
    if url.startswith("//"):
        return "https:" + url
    return site_root.rstrip("/") + "/" + url.lstrip("/")


def id_from_url(url: str) -> str:
    path = url.split("?", 1)[0].split("#", 1)[0].rstrip("/")
    return path.rsplit("/", 1)[-1]


def _ld_types(obj: dict[str, Any]) -> set[str]:
    t = obj.get("@type")
    if isinstance(t, str):
        return {t}
    if isinstance(t, list):
        return {x for x in t if isinstance(x, str)}
    return set()


# --- listings ---------------------------------------------------------------


def listing_from_json_ld(obj: dict[str, Any], site_root: str) -> ProductListing | None:
    name = _text(obj.get("name"))
    url = absolutize(_text(obj.get("url")), site_root)
    if not name or not url:
        return None

    image = obj.get("image")
    if isinstance(image, list):
        image = image[0] if image else None
    if isinstance(image, dict):
        image = image.get("url")

    price: float | None = None
    merchant = None
    offers = obj.get("offers")
    offer_list = offers if isinstance(offers, list) else [offers] if isinstance(offers, dict) else []
    for offer in offer_list:
        if not isinstance(offer, dict):
            continue
        candidates = [_positive(offer.get("lowPrice")), _positive(offer.get("price"))]
        for p in candidates:
            if p is not None and (price is None or p < price):
                price = p
                merchant = _name_of(offer.get("seller")) or merchant

    return ProductListing(
        id=_text(obj.get("sku")) or _text(obj.get("productID")) or id_from_url(url),
        name=name,
        price=price or 0.0,
        product_url=url,
        merchant_name=merchant,
        brand=_name_of(obj.get("brand")),
        image_url=absolutize(_text(image), site_root),
    )


def listings_from_json_ld(objs: Iterable[dict[str, Any]], site_root: str) -> list[ProductListing]:
    out: list[ProductListing] = []
    for obj in objs:
        types = _ld_types(obj)
        if "Product" in types:
            items = [obj]
        elif "ItemList" in types:
            items = []
            for el in obj.get("itemListElement") or []:
                # ListItem wrappers carry the product under "item".
                if isinstance(el, dict) and isinstance(el.get("item"), dict):
                    el = el["item"]
                if isinstance(el, dict):
                    items.append(el)
        else:
            continue
        for item in items:
            listing = listing_from_json_ld(item, site_root)
            if listing is not None:
                out.append(listing)
    return out


def _image_from_app_state(obj: dict[str, Any], site_root: str) -> str | None:
    ids = obj.get("imageIds")
    if isinstance(ids, list) and ids and isinstance(ids[0], (int, str)) and not isinstance(ids[0], bool):
        return f"{site_root}/api/imageproxy/{ids[0]}"
    return absolutize(_text(_first(obj, "imageUrl", "image")), site_root)


def _min_offer_price(obj: dict[str, Any]) -> float | None:
    summary = obj.get("offerSummary")
    if isinstance(summary, dict):
        p = _positive(summary.get("minPrice"))
        if p is not None:
            return p
    prices = []
    for offer in obj.get("offers") or []:
        if isinstance(offer, dict):
            p = _positive(offer.get("price"))
            if p is not None:
                prices.append(p)
    if prices:
        return min(prices)
    return _positive(obj.get("price"))


def listing_from_app_state(obj: dict[str, Any], site_root: str) -> ProductListing | None:
    name = _text(_first(obj, "title", "name"))
    path = _text(_first(obj, "path", "url"))
    url = absolutize(path, site_root)
    if not name or not url:
        return None

    price = _min_offer_price(obj) or 0.0
    original = _positive(_first(obj, "originalPrice", "oldPrice"))
    discount_raw = _first(obj, "discountPercentage", "discountRate")
    discount = None
    if discount_raw is not None:
        d = parse_price(discount_raw)
        if d is not None and d > 0:
            discount = int(round(d))
    if discount is None and original and price and original > price:
        discount = int(round((original - price) / original * 100))

    merchant = obj.get("merchant")
    merchant_id = merchant_name = None
    if isinstance(merchant, dict):
        merchant_id = _text(merchant.get("id"))
        merchant_name = _text(merchant.get("name"))
    elif merchant is not None:
        merchant_name = _text(merchant)

    brand = _name_of(obj.get("brandSummary")) or _name_of(obj.get("brand"))

    return ProductListing(
        id=_text(obj.get("id")) or id_from_url(url),
        name=name,
        price=price,
        product_url=url,
        unit_price=_positive(obj.get("unitPrice")),
        merchant_id=merchant_id,
        merchant_name=merchant_name,
        brand=brand,
        quantity=_text(obj.get("quantity")),
        unit=_text(obj.get("unit")),
        image_url=_image_from_app_state(obj, site_root),
        is_on_sale=bool(discount),
        original_price=original,
        discount_percentage=discount,
    )


def find_product_array(state: dict[str, Any]) -> list[Any] | None:
    for path in PRODUCT_LIST_PATHS:
        val = dig(state, path)
        if isinstance(val, list):
            return val
    page_props = dig(state, ("props", "pageProps"))
    if isinstance(page_props, dict):
        logger.warning("no product array in app state; pageProps keys: %s", ", ".join(sorted(page_props)))
    return None


def listings_from_app_state(state: dict[str, Any], site_root: str) -> list[ProductListing]:
    items = find_product_array(state) or []
    out = []
    for item in items:
        if isinstance(item, dict):
            listing = listing_from_app_state(item, site_root)
            if listing is not None:
                out.append(listing)
    return out


_FILLABLE = ("merchant_name", "merchant_id", "brand", "image_url", "unit_price", "quantity", "unit")


def merge_listings(primary: list[ProductListing], secondary: list[ProductListing]) -> list[ProductListing]:
    """Keep *primary* (the app-state data) and fill its gaps from *secondary*.

    Records are paired by product URL, then by case-insensitive name.
    """
    if not primary:
        return secondary
    by_url = {l.product_url: l for l in secondary}
    by_name = {l.name.casefold(): l for l in secondary}
    for listing in primary:
        other = by_url.get(listing.product_url) or by_name.get(listing.name.casefold())
        if other is None:
            continue
        for attr in _FILLABLE:
            if getattr(listing, attr) in (None, "") and getattr(other, attr) not in (None, ""):
                setattr(listing, attr, getattr(other, attr))
        if listing.price <= 0 < other.price:
            listing.price = other.price
    return primary


def map_listings(page: ExtractedPage, site_root: str) -> list[ProductListing]:
    ld = listings_from_json_ld(page.json_ld, site_root)
    app = listings_from_app_state(page.app_state, site_root) if page.app_state else []
    merged = merge_listings(app, ld)
    logger.debug("mapped %d listings (%d from app state, %d from JSON-LD)", len(merged), len(app), len(ld))
    return merged


# --- detail -----------------------------------------------------------------


def offer_from_json_ld(obj: dict[str, Any]) -> MarketOffer | None:
    price = _positive(obj.get("price")) or _positive(obj.get("lowPrice"))
    if price is None:
        return None
    return MarketOffer(merchant_name=_name_of(obj.get("seller")) or "", price=price)


def offers_from_json_ld(value: Any) -> list[MarketOffer]:
    if isinstance(value, dict):
        # An AggregateOffer may nest the individual offers.
        nested = value.get("offers")
        if isinstance(nested, (list, dict)):
            inner = offers_from_json_ld(nested)
            if inner:
                return inner
        value = [value]
    if not isinstance(value, list):
        return []
    out = []
    for item in value:
        if isinstance(item, dict):
            offer = offer_from_json_ld(item)
            if offer is not None:
                out.append(offer)
    return out


def offer_from_app_state(obj: dict[str, Any]) -> MarketOffer | None:
    price = _positive(obj.get("price"))
    if price is None:
        return None
    merchant = _first(obj, "merchantName", "merchant")
    return MarketOffer(
        merchant_name=_name_of(merchant) or "",
        price=price,
        merchant_id=_text(obj.get("merchantId")) or (_text(merchant.get("id")) if isinstance(merchant, dict) else None),
        unit_price=_positive(obj.get("unitPrice")),
    )


def specs_from_app_state(value: Any) -> list[SpecGroup]:
    groups: list[SpecGroup] = []
    if isinstance(value, list):
        for raw in value:
            if not isinstance(raw, dict):
                continue
            group = SpecGroup(group=_text(_first(raw, "group", "name")) or "")
            for item in _first(raw, "items", "specs") or []:
                if isinstance(item, dict) and _text(item.get("name")):
                    group.items.append(SpecItem(name=_text(item["name"]), value=_text(item.get("value")) or ""))
            if group.group or group.items:
                groups.append(group)
    elif isinstance(value, dict):
        group = SpecGroup(group="General")
        for k, v in value.items():
            group.items.append(SpecItem(name=str(k), value=_text(v) or ""))
        if group.items:
            groups.append(group)
    return groups


def _history_date(raw: dict[str, Any]) -> str | None:
    d = raw.get("date")
    if isinstance(d, str) and d.strip():
        txt = d.strip()
        try:
            return datetime.fromisoformat(txt.replace("Z", "+00:00")).date().isoformat()
        except ValueError:
            try:
                return date.fromisoformat(txt[:10]).isoformat()
            except ValueError:
                return None
    ts = raw.get("timestamp")
    if isinstance(ts, str) and ts.strip().isdigit():
        ts = int(ts.strip())
    if isinstance(ts, (int, float)) and not isinstance(ts, bool):
        # Millisecond timestamps are common in app state.
        if ts > 10_000_000_000:
            ts = ts / 1000
        try:
            return datetime.fromtimestamp(ts, tz=timezone.utc).date().isoformat()
        except (OverflowError, OSError, ValueError):
            return None
    return None


def price_history_from_app_state(value: Any) -> list[PricePoint]:
    out = []
    if not isinstance(value, list):
        return out
    for raw in value:
        if not isinstance(raw, dict):
            continue
        price = _positive(raw.get("price"))
        when = _history_date(raw)
        if price is None or when is None:
            continue
        out.append(PricePoint(date=when, price=price))
    return out


def find_detail_product(state: dict[str, Any]) -> dict[str, Any] | None:
    for path in DETAIL_PRODUCT_PATHS:
        val = dig(state, path)
        if isinstance(val, dict):
            return val
    return None


def map_product_detail(page: ExtractedPage, product_id: str) -> ProductDetail:
    detail = ProductDetail(id=product_id)
    ld_offers: list[MarketOffer] = []

    for obj in page.json_ld:
        if "Product" not in _ld_types(obj):
            continue
        detail.name = _text(obj.get("name")) or detail.name
        detail.description = _text(obj.get("description")) or detail.description
        ld_offers.extend(offers_from_json_ld(obj.get("offers")))

    app_offers: list[MarketOffer] = []
    product = find_detail_product(page.app_state) if page.app_state else None
    if product is not None:
        detail.name = _text(_first(product, "name", "title")) or detail.name
        detail.description = _text(product.get("description")) or detail.description
        detail.specs = specs_from_app_state(_first(product, "specs", "specifications"))
        detail.price_history = price_history_from_app_state(product.get("priceHistory"))
        for raw in _first(product, "offers", "merchants", "offlineOffers") or []:
            if isinstance(raw, dict):
                offer = offer_from_app_state(raw)
                if offer is not None:
                    app_offers.append(offer)

    detail.offers = app_offers or ld_offers
    # Never surface a non-positive price, whatever the source.
    detail.offers = [o for o in detail.offers if o.price > 0]
    detail.price_history = [p for p in detail.price_history if p.price > 0]

    logger.info(
        "product %s: %d spec groups, %d price points, %d offers",
        product_id, len(detail.specs), len(detail.price_history), len(detail.offers),
    )
    return detail
