from __future__ import annotations

import re

from .models import IngredientRequirement
from .query import tr_lower


_FRACTION_RE = re.compile(r"^(?:(\d+)\s+)?(\d+)\/(\d+)$")

_UNICODE_FRACTIONS = {
    "½": 0.5,
    "¼": 0.25,
    "¾": 0.75,
    "⅓": 1 / 3,
    "⅔": 2 / 3,
}


def parse_quantity_token(tok: str) -> float | None:
    """Parse tokens like '1', '1,5', '1/2', '2 1/2' or '½'."""
    tok = tok.strip()
    if not tok:
        return None

    # simple int/float, Turkish decimal comma included
    try:
        return float(tok.replace(",", "."))
    except ValueError:
        pass

    m = _FRACTION_RE.match(tok)
    if m:
        whole, num, den = m.groups()
        if int(den) == 0:
            return None
        val = (int(num) / int(den))
        if whole:
            val += int(whole)
        return float(val)

    if tok in _UNICODE_FRACTIONS:
        return float(_UNICODE_FRACTIONS[tok])

    return None


_QTY = r"(\d+(?:[.,]\d+)?(?:\s+\d+/\d+)?(?:/\d+)?|[½¼¾⅓⅔])"

# First match wins; order matters ("kg" before a bare "g" would never be reached otherwise).
_PATTERNS = [
    re.compile(_QTY + r"\s*(gram|gr|g)\s+(.+)", re.IGNORECASE),
    re.compile(_QTY + r"\s*(kg|kilo)\s+(.+)", re.IGNORECASE),
    re.compile(_QTY + r"\s*(ml|litre|lt|l)\s+(.+)", re.IGNORECASE),
    re.compile(_QTY + r"\s*(adet|tane)\s+(.+)", re.IGNORECASE),
    re.compile(_QTY + r"\s*(su\s+bardağı|çay\s+bardağı|bardak)\s+(.+)", re.IGNORECASE),
    re.compile(_QTY + r"\s*(yemek\s+kaşığı|çay\s+kaşığı|tatlı\s+kaşığı|kaşık)\s+(.+)", re.IGNORECASE),
    re.compile(_QTY + r"\s*(tutam|çimdik)\s+(.+)", re.IGNORECASE),
    re.compile(_QTY + r"\s*(diş)\s+(.+)", re.IGNORECASE),
    re.compile(_QTY + r"\s*(demet|dal|yaprak)\s+(.+)", re.IGNORECASE),
]

_BARE_NUMBER_RE = re.compile(r"^" + _QTY + r"\s+(.+)$")

_UNIT_ALIASES: dict[str, str] = {
    "gram": "g",
    "gr": "g",
    "g": "g",
    "kg": "kg",
    "kilo": "kg",
    "kilogram": "kg",
    "ml": "ml",
    "mililitre": "ml",
    "lt": "lt",
    "l": "lt",
    "litre": "lt",
    "adet": "adet",
    "tane": "adet",
    "su bardağı": "bardak",
    "bardak": "bardak",
    "çay bardağı": "çay bardağı",
    "yemek kaşığı": "yemek kaşığı",
    "kaşık": "yemek kaşığı",
    "tatlı kaşığı": "tatlı kaşığı",
    "çay kaşığı": "çay kaşığı",
    "tutam": "tutam",
    "çimdik": "tutam",
    "diş": "diş",
    "demet": "demet",
    "dal": "demet",
    "yaprak": "yaprak",
}

# Approximate grams per unit.
_GRAMS_PER_UNIT: dict[str, float] = {
    "g": 1.0,
    "kg": 1000.0,
    "ml": 1.0,
    "lt": 1000.0,
    "bardak": 200.0,
    "çay bardağı": 100.0,
    "yemek kaşığı": 15.0,
    "tatlı kaşığı": 10.0,
    "çay kaşığı": 5.0,
    "tutam": 2.0,
    "diş": 5.0,
    "demet": 30.0,
}

DEFAULT_GRAMS_PER_UNIT = 100.0

# Typical weight of one item, for count units.
ITEM_WEIGHTS: dict[str, float] = {
    "yumurta": 60,
    "domates": 150,
    "soğan": 150,
    "patates": 200,
    "havuç": 100,
    "salatalık": 200,
    "biber": 100,
    "limon": 100,
    "elma": 180,
    "muz": 120,
    "portakal": 200,
    "sarımsak": 40,
    "kabak": 300,
    "patlıcan": 300,
}


def _strip_parentheticals(s: str) -> str:
    s = re.sub(r"\([^)]*\)", "", s).strip()
    s = re.sub(r"[()]", "", s).strip()
    return s


def normalize_unit(unit: str) -> str:
    key = " ".join(tr_lower(unit).split())
    return _UNIT_ALIASES.get(key, key)


def estimate_item_grams(name: str, quantity: float) -> float:
    lower = tr_lower(name)
    for key, weight in ITEM_WEIGHTS.items():
        if key in lower:
            return quantity * weight
    return quantity * DEFAULT_GRAMS_PER_UNIT


def to_grams(quantity: float, unit: str, name: str) -> float:
    if unit == "adet":
        return estimate_item_grams(name, quantity)
    return quantity * _GRAMS_PER_UNIT.get(unit, DEFAULT_GRAMS_PER_UNIT)


def clean_name(name: str) -> str:
    name = _strip_parentheticals(name)
    name = name.strip(":,;.- ")
    return re.sub(r"\s{2,}", " ", name).strip()


def parse_ingredient(text: str) -> IngredientRequirement:
    """Split a recipe line like "2 yemek kaşığı zeytinyağı" into quantity, unit and name."""
    cleaned = _strip_parentheticals(text or "")
    # "tuz: damak zevkine göre" -> "tuz"
    cleaned = cleaned.split(":", 1)[0].strip()
    cleaned = re.sub(r"\s{2,}", " ", cleaned)

    for pattern in _PATTERNS:
        m = pattern.match(cleaned)
        if not m:
            continue
        qty = parse_quantity_token(m.group(1))
        if qty is None:
            continue
        unit = normalize_unit(m.group(2))
        name = clean_name(m.group(3))
        return IngredientRequirement(
            original_text=text,
            name=name,
            quantity=qty,
            unit=unit,
            quantity_in_grams=to_grams(qty, unit, name),
        )

    m = _BARE_NUMBER_RE.match(cleaned)
    if m and parse_quantity_token(m.group(1)) is not None:
        qty = parse_quantity_token(m.group(1))
        name = clean_name(m.group(2))
        return IngredientRequirement(
            original_text=text,
            name=name,
            quantity=qty,
            unit="adet",
            quantity_in_grams=to_grams(qty, "adet", name),
        )

    name = clean_name(cleaned)
    return IngredientRequirement(
        original_text=text,
        name=name,
        quantity=1.0,
        unit="adet",
        quantity_in_grams=to_grams(1.0, "adet", name),
    )


def is_pantry_staple(name: str, staples: tuple[str, ...] | list[str]) -> bool:
    """True when *name* names something every kitchen already has.

    Staples match on whole words, so "su" matches "sıcak su" but not "sucuk".
    """
    if not name or not name.strip():
        return False
    words = re.findall(r"\w+", tr_lower(name))
    if not words:
        return False
    for staple in staples:
        staple_words = re.findall(r"\w+", tr_lower(staple))
        n = len(staple_words)
        if n == 0:
            continue
        for i in range(len(words) - n + 1):
            if words[i:i + n] == staple_words:
                return True
    return False
