"""Visit pricing engine.

Pure functions: no storage access, no clock. Given catalogue data they
turn item ids into capability-grouped visit drafts and price a visit from
its duration, answers and uncertainty policy.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from homeflow.catalogue.models import (
    UNCERTAINTY_PRIORITY,
    CatalogueItem,
    PricingTier,
    UncertaintyHandling,
)
from homeflow.catalogue.source import CatalogueSource
from homeflow.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Answers that signal the customer does not know
UNCERTAIN_ANSWERS = frozenset({"not_sure", "not sure", "no", "no / not sure", "unsure", "don't know"})

# Capability tag priced by room count instead of duration
ROOM_BANDED_CAPABILITY = "CLEANING"

# Upper room-count bound per cleaning band, in ladder order
CLEANING_ROOM_BANDS = (2, 4)


@dataclass(frozen=True)
class TierPrice:
    """Result of pricing a duration on a ladder."""

    tier: str
    price: Decimal
    max_minutes: Optional[int] = None


@dataclass
class VisitDraft:
    """An unsaved, unlocked visit produced from a request."""

    capability_tag: str
    primary_item_id: str
    pricing_ladder: str
    base_minutes: int
    tier: str
    price: Decimal
    visit_type_label: str
    addon_item_ids: List[str] = field(default_factory=list)

    @property
    def item_ids(self) -> List[str]:
        return [self.primary_item_id, *self.addon_item_ids]


@dataclass(frozen=True)
class VisitQuote:
    """Outcome of pricing a visit against its scope-lock answers."""

    tier: str
    price: Decimal
    base_minutes: int
    effective_minutes: int
    extra_minutes: int
    applied_handling: UncertaintyHandling


def _sorted(tiers: Sequence[PricingTier]) -> List[PricingTier]:
    return sorted(tiers, key=lambda t: t.sort_key)


def calculate_tier_and_price(minutes: int, tiers: Sequence[PricingTier]) -> TierPrice:
    """First tier whose max_minutes covers ``minutes``; the top tier otherwise.

    Raises:
        ValidationError: If minutes is negative or the ladder is empty
    """
    if minutes < 0:
        raise ValidationError("Minutes cannot be negative")
    ladder = _sorted(tiers)
    if not ladder:
        raise ValidationError("Pricing ladder has no tiers")
    for tier in ladder:
        if tier.max_minutes is None or tier.max_minutes >= minutes:
            return TierPrice(tier=tier.tier, price=tier.price, max_minutes=tier.max_minutes)
    top = ladder[-1]
    return TierPrice(tier=top.tier, price=top.price, max_minutes=top.max_minutes)


def top_tier(tiers: Sequence[PricingTier]) -> TierPrice:
    ladder = _sorted(tiers)
    if not ladder:
        raise ValidationError("Pricing ladder has no tiers")
    top = ladder[-1]
    return TierPrice(tier=top.tier, price=top.price, max_minutes=top.max_minutes)


def next_tier(current: str, tiers: Sequence[PricingTier]) -> TierPrice:
    """The tier one step above ``current`` (the top tier stays where it is)."""
    ladder = _sorted(tiers)
    codes = [t.tier for t in ladder]
    if current not in codes:
        raise ValidationError(f"Tier {current} is not on this ladder")
    index = min(codes.index(current) + 1, len(ladder) - 1)
    tier = ladder[index]
    return TierPrice(tier=tier.tier, price=tier.price, max_minutes=tier.max_minutes)


def build_visits(item_ids: Sequence[str], catalogue: CatalogueSource) -> List[VisitDraft]:
    """Group items by capability tag into independently priced visit drafts.

    The first item seen for a capability becomes the visit's primary item;
    the rest are add-ons. Visits are returned in first-seen order.

    Raises:
        ValidationError: If no items are given or an item id is unknown
    """
    if not item_ids:
        raise ValidationError("At least one job item is required")

    groups: Dict[str, List[CatalogueItem]] = {}
    for item_id in item_ids:
        try:
            item = catalogue.get_item(item_id)
        except NotFoundError as e:
            raise ValidationError(e.reason) from e
        groups.setdefault(item.capability_tag or "HANDYMAN", []).append(item)

    drafts = []
    for capability, items in groups.items():
        primary = items[0]
        base_minutes = sum(i.default_minutes for i in items)
        priced = calculate_tier_and_price(base_minutes, catalogue.get_ladder(primary.pricing_ladder))
        label = primary.display_name
        if len(items) > 1:
            label = f"{label} + {len(items) - 1} more"
        drafts.append(
            VisitDraft(
                capability_tag=capability,
                primary_item_id=primary.job_item_id,
                addon_item_ids=[i.job_item_id for i in items[1:]],
                pricing_ladder=primary.pricing_ladder,
                base_minutes=base_minutes,
                tier=priced.tier,
                price=priced.price,
                visit_type_label=label,
            )
        )
    logger.debug(f"Built {len(drafts)} visit(s) from {len(item_ids)} item(s)")
    return drafts


def is_uncertain_answer(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return value.strip().lower() in UNCERTAIN_ANSWERS


def resolve_uncertainty(
    items: Iterable[CatalogueItem], answers: Dict[str, Any]
) -> tuple[UncertaintyHandling, int]:
    """Decide the uncertainty outcome for a visit.

    Returns the winning handling and the buffer minutes to add. FORCE_H3
    wins over BUFFER, which wins over IGNORE; buffers are only summed when
    BUFFER is the winner.
    """
    if not any(is_uncertain_answer(v) for v in answers.values()):
        return UncertaintyHandling.IGNORE, 0

    flagged = [i for i in items if i.uncertainty_prone]
    if not flagged:
        return UncertaintyHandling.IGNORE, 0

    winner = max((i.uncertainty_handling for i in flagged), key=UNCERTAINTY_PRIORITY.__getitem__)
    if winner == UncertaintyHandling.BUFFER:
        extra = sum(
            i.risk_buffer_minutes
            for i in flagged
            if i.uncertainty_handling == UncertaintyHandling.BUFFER
        )
        return winner, extra
    return winner, 0


def _room_count(answers: Dict[str, Any]) -> int:
    total = 0
    found = False
    for key in ("bedrooms", "bathrooms", "rooms"):
        if key not in answers or answers[key] in (None, ""):
            continue
        try:
            count = int(answers[key])
        except (TypeError, ValueError):
            raise ValidationError(f"Answer '{key}' must be a whole number") from None
        if count < 0:
            raise ValidationError(f"Answer '{key}' cannot be negative")
        total += count
        found = True
    if not found:
        raise ValidationError("Cleaning visits need a bedroom or bathroom count")
    return total


def cleaning_tier(answers: Dict[str, Any], tiers: Sequence[PricingTier]) -> TierPrice:
    """Band a cleaning visit by room count: up to 2 rooms, up to 4, then more."""
    rooms = _room_count(answers)
    ladder = _sorted(tiers)
    band = 0
    while band < len(CLEANING_ROOM_BANDS) and rooms > CLEANING_ROOM_BANDS[band]:
        band += 1
    tier = ladder[min(band, len(ladder) - 1)]
    return TierPrice(tier=tier.tier, price=tier.price, max_minutes=tier.max_minutes)


def quote_visit(
    capability_tag: str,
    item_ids: Sequence[str],
    pricing_ladder: str,
    answers: Dict[str, Any],
    catalogue: CatalogueSource,
) -> VisitQuote:
    """Price a visit at scope-lock time."""
    items = [catalogue.get_item(i) for i in item_ids]
    tiers = catalogue.get_ladder(pricing_ladder)
    base_minutes = sum(i.default_minutes for i in items)

    if capability_tag == ROOM_BANDED_CAPABILITY:
        priced = cleaning_tier(answers, tiers)
        return VisitQuote(
            tier=priced.tier,
            price=priced.price,
            base_minutes=base_minutes,
            effective_minutes=base_minutes,
            extra_minutes=0,
            applied_handling=UncertaintyHandling.IGNORE,
        )

    handling, extra = resolve_uncertainty(items, answers)
    effective = base_minutes + extra
    if handling == UncertaintyHandling.FORCE_H3:
        priced = top_tier(tiers)
    else:
        priced = calculate_tier_and_price(effective, tiers)
    return VisitQuote(
        tier=priced.tier,
        price=priced.price,
        base_minutes=base_minutes,
        effective_minutes=effective,
        extra_minutes=extra,
        applied_handling=handling,
    )


def upgrade_quote(
    effective_minutes: int,
    extra_minutes: int,
    current_tier: str,
    tiers: Sequence[PricingTier],
) -> tuple[int, TierPrice]:
    """Re-price a visit after an on-site scope mismatch.

    The bumped duration is recomputed on the ladder. An upgrade never keeps
    the current tier: if the recomputed tier is not above it, the next tier
    up is used (the top tier stays where it is).
    """
    if extra_minutes <= 0:
        raise ValidationError("Extra minutes must be positive")
    bumped = effective_minutes + extra_minutes
    priced = calculate_tier_and_price(bumped, tiers)
    codes = [t.tier for t in _sorted(tiers)]
    if current_tier in codes and codes.index(priced.tier) <= codes.index(current_tier):
        priced = next_tier(current_tier, tiers)
    return bumped, priced
