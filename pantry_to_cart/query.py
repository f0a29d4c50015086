from __future__ import annotations

from urllib.parse import quote_plus

_TR_TO_ASCII = str.maketrans({
    "ş": "s", "Ş": "S",
    "ı": "i", "İ": "I",
    "ğ": "g", "Ğ": "G",
    "ü": "u", "Ü": "U",
    "ö": "o", "Ö": "O",
    "ç": "c", "Ç": "C",
})

_TR_LOWER = str.maketrans({"I": "ı", "İ": "i"})


def to_url_safe(text: str) -> str:
    """Replace Turkish letters with their closest ASCII counterpart.

    Everything else is left untouched, including case.
    """
    if not text:
        return text
    return text.translate(_TR_TO_ASCII)


def tr_lower(text: str) -> str:
    # str.lower() turns "İ" into "i̇" (with a combining dot) and "I" into "i".
    return text.translate(_TR_LOWER).lower()


def build_search_url(base_url: str, query: str, *, page: int = 1, sort: str | None = None) -> str:
    """Canonical search URL: ``{base}?q=...[&page=N][&sort=...]``.

    Page 1 is implicit so the same search always maps to the same cache key.
    """
    term = " ".join(to_url_safe(query).split())
    url = f"{base_url}?q={quote_plus(term)}"
    if page > 1:
        url += f"&page={page}"
    if sort and sort.strip():
        url += f"&sort={quote_plus(sort.strip())}"
    return url


def build_detail_url(template: str, product_id: str) -> str:
    return template.format(product_id=quote_plus(product_id.strip(), safe="-_."))
