"""Read-only catalogue of job items, pricing ladders and clarifiers."""

from homeflow.catalogue.models import (
    CAPABILITY_CATEGORIES,
    SPECIALIST_EXCLUSIVE_CATEGORIES,
    UNCERTAINTY_PRIORITY,
    CatalogueItem,
    Clarifier,
    PricingTier,
    UncertaintyHandling,
)
from homeflow.catalogue.source import CatalogueSource, JsonCatalogue, clarifiers_for

__all__ = [
    "CAPABILITY_CATEGORIES",
    "SPECIALIST_EXCLUSIVE_CATEGORIES",
    "UNCERTAINTY_PRIORITY",
    "CatalogueItem",
    "CatalogueSource",
    "Clarifier",
    "JsonCatalogue",
    "PricingTier",
    "UncertaintyHandling",
    "clarifiers_for",
]
