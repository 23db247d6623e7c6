"""Catalogue data models.

A catalogue item is one priceable unit of work the request parser can
recognise (e.g. "mount a TV"). Items carry the capability tag that groups
them into visits and the pricing ladder their visit is priced on.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class UncertaintyHandling(str, Enum):
    """What to do when a customer is unsure about an uncertainty-prone item.

    Ordered by priority: FORCE_H3 beats BUFFER beats IGNORE.
    """

    IGNORE = "IGNORE"
    BUFFER = "BUFFER"
    FORCE_H3 = "FORCE_H3"


UNCERTAINTY_PRIORITY = {
    UncertaintyHandling.IGNORE: 0,
    UncertaintyHandling.BUFFER: 1,
    UncertaintyHandling.FORCE_H3: 2,
}

# Capability tag -> job category used for provider category matching
CAPABILITY_CATEGORIES = {
    "HANDYMAN": "HANDYMAN",
    "PLUMBING": "PLUMBER",
    "ELECTRICAL": "ELECTRICIAN",
    "CLEANING": "CLEANING",
    "PAINTING": "PAINTER",
    "CARPENTRY": "CARPENTER",
    "PC_REPAIR": "PC_REPAIR",
}

# Categories served only by specialists; generalists are never offered these
SPECIALIST_EXCLUSIVE_CATEGORIES = frozenset({"CLEANING"})


@dataclass(frozen=True)
class PricingTier:
    """A priced duration bracket on a ladder.

    ``max_minutes`` of None marks an unbounded tier.
    """

    tier: str
    ladder: str
    price: Decimal
    max_minutes: Optional[int] = None

    def __post_init__(self):
        if not self.tier:
            raise ValueError("Tier code is required")
        if self.max_minutes is not None and self.max_minutes <= 0:
            raise ValueError(f"Tier {self.tier} max_minutes must be positive")
        if Decimal(self.price) < 0:
            raise ValueError(f"Tier {self.tier} price cannot be negative")

    @property
    def sort_key(self) -> float:
        return float("inf") if self.max_minutes is None else float(self.max_minutes)


@dataclass(frozen=True)
class CatalogueItem:
    """A job item as published by the catalogue."""

    job_item_id: str
    display_name: str
    capability_tag: str
    default_minutes: int
    pricing_ladder: str
    uncertainty_prone: bool = False
    uncertainty_handling: UncertaintyHandling = UncertaintyHandling.IGNORE
    risk_buffer_minutes: int = 0
    clarifier_ids: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.job_item_id:
            raise ValueError("job_item_id is required")
        if self.default_minutes < 0:
            raise ValueError(f"Item {self.job_item_id} has negative duration")
        if self.risk_buffer_minutes < 0:
            raise ValueError(f"Item {self.job_item_id} has negative risk buffer")
        if not isinstance(self.uncertainty_handling, UncertaintyHandling):
            try:
                object.__setattr__(
                    self, "uncertainty_handling", UncertaintyHandling(self.uncertainty_handling)
                )
            except ValueError:
                raise ValueError(
                    f"Invalid uncertainty handling: {self.uncertainty_handling}"
                ) from None

    @property
    def category(self) -> str:
        return CAPABILITY_CATEGORIES.get(self.capability_tag, self.capability_tag)


@dataclass(frozen=True)
class Clarifier:
    """A question asked before scope lock."""

    clarifier_id: str
    question: str
    input_type: str = "choice"  # choice | number | text
    options: List[str] = field(default_factory=list)
