"""Visit building and pricing."""

from homeflow.pricing.engine import (
    TierPrice,
    VisitDraft,
    VisitQuote,
    build_visits,
    calculate_tier_and_price,
    cleaning_tier,
    next_tier,
    quote_visit,
    resolve_uncertainty,
    top_tier,
    upgrade_quote,
)

__all__ = [
    "TierPrice",
    "VisitDraft",
    "VisitQuote",
    "build_visits",
    "calculate_tier_and_price",
    "cleaning_tier",
    "next_tier",
    "quote_visit",
    "resolve_uncertainty",
    "top_tier",
    "upgrade_quote",
]
