from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

SOURCE_DIRECT = "direct-http"
SOURCE_BROWSER = "rendered-browser"


@dataclass(frozen=True)
class SearchRequest:
    raw_term: str
    page: int = 1
    quantity_hint: str | None = None
    sort_hint: str | None = None


@dataclass(frozen=True)
class ExpandedQuery:
    original_term: str
    expanded_term: str

    @property
    def was_expanded(self) -> bool:
        return self.expanded_term != self.original_term


@dataclass(frozen=True)
class FetchResult:
    url: str
    raw_body: str
    fetched_at: float
    source_method: str  # SOURCE_DIRECT or SOURCE_BROWSER

    @property
    def is_empty(self) -> bool:
        return not self.raw_body.strip()


@dataclass
class ProductListing:
    """A single search-result product with its cheapest observed price."""

    id: str
    name: str
    price: float
    product_url: str
    unit_price: float | None = None
    merchant_id: str | None = None
    merchant_name: str | None = None
    brand: str | None = None
    quantity: str | None = None
    unit: str | None = None
    image_url: str | None = None
    is_on_sale: bool = False
    original_price: float | None = None
    discount_percentage: int | None = None


@dataclass
class SpecItem:
    name: str
    value: str


@dataclass
class SpecGroup:
    group: str
    items: list[SpecItem] = field(default_factory=list)


@dataclass(frozen=True)
class PricePoint:
    date: str  # ISO-8601 date
    price: float


@dataclass(frozen=True)
class MarketOffer:
    merchant_name: str
    price: float
    merchant_id: str | None = None
    unit_price: float | None = None


@dataclass
class ProductDetail:
    id: str
    name: str = ""
    description: str = ""
    specs: list[SpecGroup] = field(default_factory=list)
    price_history: list[PricePoint] = field(default_factory=list)
    offers: list[MarketOffer] = field(default_factory=list)


@dataclass
class SearchResult:
    query: str
    current_page: int
    total_pages: int = 0
    products: list[ProductListing] = field(default_factory=list)

    # True when nothing could be fetched at all (as opposed to a page with no hits).
    fetch_failed: bool = False


@dataclass(frozen=True)
class IngredientRequirement:
    original_text: str
    name: str
    quantity: float
    unit: str
    quantity_in_grams: float


@dataclass(frozen=True)
class ProductSizeInfo:
    size_in_grams: float = 0.0
    unit: str = ""
    pack_count: int = 1

    @property
    def known(self) -> bool:
        return self.size_in_grams > 0


@dataclass
class PriceComparison:
    """One merchant's offer for the chosen product, as returned to callers."""

    store: str
    price: float
    product_name: str
    currency: str = "TL"
    product_url: str | None = None
    image_url: str | None = None
    unit_price: float | None = None
    is_on_sale: bool = False
    original_price: float | None = None
    discount_percentage: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriceComparison":
        return cls(**data)


@dataclass(frozen=True)
class ScoredCandidate:
    offer: PriceComparison
    score: float
    size_info: ProductSizeInfo


class MatchState(str, Enum):
    EXPANDING = "expanding"
    RETRIEVING = "retrieving"
    RANKING = "ranking"
    SELECTED = "selected"
    NO_MATCH = "no_match"


@dataclass(frozen=True)
class SelectionResult:
    chosen_listing: ProductListing | None
    reason: str
    is_valid: bool
    state: MatchState = MatchState.NO_MATCH

    # How the choice was made: "assist", "fallback" or "none".
    decided_by: str = "none"
    expanded: ExpandedQuery | None = None


@dataclass
class BestOffer:
    listing: ProductListing
    reason: str
    offers: list[PriceComparison] = field(default_factory=list)
    best: PriceComparison | None = None
