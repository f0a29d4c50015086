"""Three-stage product matching: expand the query, retrieve candidates, re-rank.

Every stage that consults the assist service has a deterministic fallback,
so a dead or confused model never blocks a match.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .assist import (
    AssistUnavailable,
    TextGenerator,
    build_expansion_prompt,
    build_rerank_prompt,
    clean_expansion,
    parse_rerank_reply,
)
from .cache import FileCache
from .cimri import CimriClient
from .config import MatchingRules
from .match import fallback_select, select_best_offer
from .models import (
    BestOffer,
    ExpandedQuery,
    MatchState,
    PriceComparison,
    ProductDetail,
    ProductListing,
    SearchRequest,
    SelectionResult,
)
from .normalize import parse_ingredient
from .query import tr_lower

logger = logging.getLogger(__name__)

SEARCH_SORT = "price-asc"


@dataclass(frozen=True)
class Retrieval:
    candidates: list[ProductListing]
    fetch_failed: bool = False


class PriceFinder:
    def __init__(
        self,
        client: CimriClient,
        *,
        assist: TextGenerator | None = None,
        rules: MatchingRules | None = None,
        price_cache: FileCache | None = None,
        price_cache_ttl: float = 30 * 60,
    ):
        self.client = client
        self.assist = assist
        self.rules = rules or MatchingRules()
        self.price_cache = price_cache
        self.price_cache_ttl = price_cache_ttl

    # --- stage 1 ---

    def expand_query(self, term: str) -> ExpandedQuery:
        term = term.strip()
        if self.assist is None:
            return ExpandedQuery(original_term=term, expanded_term=term)
        try:
            reply = self.assist.generate(build_expansion_prompt(term))
        except AssistUnavailable as exc:
            logger.warning("query expansion unavailable for %r: %s", term, exc)
            return ExpandedQuery(original_term=term, expanded_term=term)
        expanded = clean_expansion(term, reply)
        if expanded == term:
            logger.info("query expansion kept %r", term)
        else:
            logger.info("query expansion: %r -> %r", term, expanded)
        return ExpandedQuery(original_term=term, expanded_term=expanded)

    # --- stage 2 ---

    def retrieve(self, term: str) -> Retrieval:
        result = self.client.run(SearchRequest(raw_term=term, page=1, sort_hint=SEARCH_SORT))
        candidates = result.products[: self.rules.candidate_limit]
        logger.info("retrieved %d candidates for %r", len(candidates), term)
        return Retrieval(candidates=candidates, fetch_failed=result.fetch_failed)

    # --- stage 3 ---

    def rerank(
        self,
        term: str,
        quantity_hint: str | None,
        candidates: list[ProductListing],
    ) -> tuple[ProductListing | None, str, str]:
        """Returns (choice, reason, decided_by)."""
        if not candidates:
            return None, "no candidates", "none"

        if self.assist is not None:
            try:
                reply = self.assist.generate(build_rerank_prompt(term, quantity_hint, candidates))
                decision = parse_rerank_reply(reply)
            except AssistUnavailable as exc:
                logger.warning("re-ranking unavailable for %r: %s", term, exc)
            else:
                if decision.is_relevant and 1 <= decision.index <= len(candidates):
                    chosen = candidates[decision.index - 1]
                    logger.info("assist picked #%d %r for %r: %s", decision.index, chosen.name, term, decision.reason)
                    return chosen, decision.reason or "selected by assist", "assist"
                logger.info(
                    "assist rejected candidates for %r (index %d, relevant %s): %s",
                    term, decision.index, decision.is_relevant, decision.reason,
                )

        chosen = fallback_select(term, candidates, self.rules.exclude_keywords)
        if chosen is None:
            return None, "no acceptable candidate", "none"
        return chosen, "cheapest matching candidate", "fallback"

    # --- entry points ---

    def find_best_match(self, product_name: str, quantity_hint: str | None = None) -> SelectionResult:
        if not product_name or not product_name.strip():
            raise ValueError("product name must not be empty")
        name = product_name.strip()

        logger.info("[%s] %s", MatchState.EXPANDING.value, name)
        expanded = self.expand_query(name)

        logger.info("[%s] %s", MatchState.RETRIEVING.value, expanded.expanded_term)
        retrieval = self.retrieve(expanded.expanded_term)

        if not retrieval.candidates:
            reason = "search failed" if retrieval.fetch_failed else "no search results"
            logger.info("[%s] %s: %s", MatchState.NO_MATCH.value, name, reason)
            return SelectionResult(
                chosen_listing=None, reason=reason, is_valid=False,
                state=MatchState.NO_MATCH, expanded=expanded,
            )

        logger.info("[%s] %d candidates", MatchState.RANKING.value, len(retrieval.candidates))
        chosen, reason, decided_by = self.rerank(name, quantity_hint, retrieval.candidates)
        if chosen is None:
            logger.info("[%s] %s: %s", MatchState.NO_MATCH.value, name, reason)
            return SelectionResult(
                chosen_listing=None, reason=reason, is_valid=False,
                state=MatchState.NO_MATCH, decided_by=decided_by, expanded=expanded,
            )

        logger.info("[%s] %s -> %s (%.2f TL, %s)", MatchState.SELECTED.value, name, chosen.name, chosen.price, decided_by)
        return SelectionResult(
            chosen_listing=chosen, reason=reason, is_valid=True,
            state=MatchState.SELECTED, decided_by=decided_by, expanded=expanded,
        )

    def offers_for(self, listing: ProductListing) -> list[PriceComparison]:
        """Per-merchant offers for *listing*, cheapest first, capped at ``max_offers``."""
        detail: ProductDetail | None = None
        if listing.id:
            detail = self.client.get_product_detail(listing.id)

        if detail is None or not detail.offers:
            logger.info("no merchant offers for %s; using the listing itself", listing.id)
            return [listing_to_comparison(listing)]

        offers = [
            PriceComparison(
                store=o.merchant_name or "Bilinmeyen",
                price=o.price,
                product_name=detail.name or listing.name,
                product_url=listing.product_url,
                image_url=listing.image_url,
                unit_price=o.unit_price,
            )
            for o in detail.offers
        ]
        offers.sort(key=lambda o: o.price)
        return offers[: self.rules.max_offers]

    def find_best_offer(self, product_name: str, quantity_hint: str | None = None) -> BestOffer | None:
        selection = self.find_best_match(product_name, quantity_hint)
        if selection.chosen_listing is None:
            return None

        listing = selection.chosen_listing
        offers = self.offers_for(listing)
        req_text = f"{quantity_hint} {product_name}" if quantity_hint else product_name
        best = select_best_offer(parse_ingredient(req_text), offers)
        return BestOffer(
            listing=listing,
            reason=selection.reason,
            offers=offers,
            best=best.offer if best is not None else None,
        )

    def compare_prices(self, product_name: str, quantity_hint: str | None = None) -> list[PriceComparison]:
        """Offers for the best match, memoized per lower-cased product name."""
        if not product_name or not product_name.strip():
            raise ValueError("product name must not be empty")
        key = f"prices:{tr_lower(product_name.strip())}"

        if self.price_cache is not None:
            cached = self.price_cache.get(key)
            if isinstance(cached, list):
                try:
                    return [PriceComparison.from_dict(d) for d in cached]
                except TypeError as exc:
                    logger.warning("ignoring unreadable price cache entry for %r: %s", product_name, exc)

        found = self.find_best_offer(product_name, quantity_hint)
        offers = found.offers if found is not None else []

        # Empty results are not memoized so a transient outage does not stick.
        if offers and self.price_cache is not None:
            self.price_cache.set(key, [o.to_dict() for o in offers], ttl=self.price_cache_ttl)
        return offers


def listing_to_comparison(listing: ProductListing) -> PriceComparison:
    return PriceComparison(
        store=listing.merchant_name or "cimri",
        price=listing.price,
        product_name=listing.name,
        product_url=listing.product_url,
        image_url=listing.image_url,
        unit_price=listing.unit_price,
        is_on_sale=listing.is_on_sale,
        original_price=listing.original_price,
        discount_percentage=listing.discount_percentage,
    )
