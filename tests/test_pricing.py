"""Tests for the visit pricing engine."""

from decimal import Decimal

import pytest

from homeflow.catalogue.models import CatalogueItem, PricingTier, UncertaintyHandling
from homeflow.errors import ValidationError
from homeflow.pricing import (
    build_visits,
    calculate_tier_and_price,
    cleaning_tier,
    next_tier,
    quote_visit,
    resolve_uncertainty,
    top_tier,
    upgrade_quote,
)


def item(item_id, handling="IGNORE", buffer=0, prone=True, minutes=30):
    return CatalogueItem(
        job_item_id=item_id,
        display_name=item_id,
        capability_tag="HANDYMAN",
        default_minutes=minutes,
        pricing_ladder="STANDARD",
        uncertainty_prone=prone,
        uncertainty_handling=handling,
        risk_buffer_minutes=buffer,
    )


class TestCalculateTierAndPrice:
    """Duration to tier lookup."""

    @pytest.mark.parametrize(
        "minutes, tier, price",
        [(0, "H1", "44"), (30, "H1", "44"), (31, "H2", "69"), (60, "H2", "69"), (61, "H3", "99")],
    )
    def test_boundaries(self, standard_tiers, minutes, tier, price):
        result = calculate_tier_and_price(minutes, standard_tiers)
        assert (result.tier, result.price) == (tier, Decimal(price))

    def test_beyond_top_tier_uses_top(self, standard_tiers):
        assert calculate_tier_and_price(500, standard_tiers).tier == "H3"

    def test_unsorted_input(self, standard_tiers):
        assert calculate_tier_and_price(45, list(reversed(standard_tiers))).tier == "H2"

    def test_price_is_monotonic_in_minutes(self, standard_tiers):
        prices = [calculate_tier_and_price(m, standard_tiers).price for m in range(0, 200, 5)]
        assert prices == sorted(prices)

    def test_unbounded_tier(self):
        tiers = [
            PricingTier(tier="C1", ladder="CLEANING", max_minutes=120, price=Decimal("69")),
            PricingTier(tier="C3", ladder="CLEANING", max_minutes=None, price=Decimal("199")),
        ]
        assert calculate_tier_and_price(1000, tiers).tier == "C3"

    def test_negative_minutes(self, standard_tiers):
        with pytest.raises(ValidationError, match="negative"):
            calculate_tier_and_price(-1, standard_tiers)

    def test_empty_ladder(self):
        with pytest.raises(ValidationError, match="no tiers"):
            calculate_tier_and_price(10, [])


class TestTierSteps:
    def test_top_tier(self, standard_tiers):
        assert top_tier(standard_tiers).tier == "H3"

    def test_next_tier(self, standard_tiers):
        assert next_tier("H1", standard_tiers).tier == "H2"
        assert next_tier("H3", standard_tiers).tier == "H3"

    def test_next_tier_unknown(self, standard_tiers):
        with pytest.raises(ValidationError, match="not on this ladder"):
            next_tier("P1", standard_tiers)


class TestResolveUncertainty:
    """Priority FORCE_H3 > BUFFER > IGNORE."""

    def test_certain_answers_ignore_everything(self):
        items = [item("a", "FORCE_H3")]
        assert resolve_uncertainty(items, {"q": "Yes"}) == (UncertaintyHandling.IGNORE, 0)

    def test_buffer_sums_buffer_items_only(self):
        items = [item("a", "BUFFER", 30), item("b", "BUFFER", 15), item("c", "IGNORE", 99)]
        assert resolve_uncertainty(items, {"q": "Not sure"}) == (UncertaintyHandling.BUFFER, 45)

    def test_force_wins_over_buffer(self):
        items = [item("a", "BUFFER", 30), item("b", "FORCE_H3")]
        assert resolve_uncertainty(items, {"q": "no"}) == (UncertaintyHandling.FORCE_H3, 0)

    def test_items_not_prone_are_skipped(self):
        items = [item("a", "BUFFER", 30, prone=False)]
        assert resolve_uncertainty(items, {"q": "unsure"}) == (UncertaintyHandling.IGNORE, 0)

    def test_non_string_answers_are_certain(self):
        items = [item("a", "BUFFER", 30)]
        assert resolve_uncertainty(items, {"rooms": 3, "ok": True})[0] == UncertaintyHandling.IGNORE


class TestQuoteVisit:
    """Scope-lock pricing against the bundled catalogue."""

    def test_certain_tv_mount(self, catalogue):
        quote = quote_visit(
            "HANDYMAN",
            ["tv_mount_standard"],
            "STANDARD",
            {"tv_bracket_check": "Yes", "wall_type": "Brick or block"},
            catalogue,
        )
        assert (quote.tier, quote.price, quote.effective_minutes) == ("H2", Decimal("69"), 45)

    def test_unsure_tv_mount_buffers_into_h3(self, catalogue):
        quote = quote_visit(
            "HANDYMAN",
            ["tv_mount_standard"],
            "STANDARD",
            {"tv_bracket_check": "Yes", "wall_type": "Not sure"},
            catalogue,
        )
        assert quote.effective_minutes == 75
        assert quote.extra_minutes == 30
        assert (quote.tier, quote.price) == ("H3", Decimal("99"))
        assert quote.applied_handling == UncertaintyHandling.BUFFER

    def test_force_h3_uses_top_tier(self, catalogue):
        quote = quote_visit(
            "HANDYMAN", ["flatpack_wardrobe"], "STANDARD", {"wardrobe_size": "No / Not sure"}, catalogue
        )
        assert quote.tier == "H3"
        assert quote.effective_minutes == 60

    @pytest.mark.parametrize(
        "bedrooms, bathrooms, tier, price",
        [(1, 1, "C1", "69"), (3, 1, "C2", "119"), (4, 2, "C3", "199")],
    )
    def test_cleaning_bands(self, catalogue, bedrooms, bathrooms, tier, price):
        quote = quote_visit(
            "CLEANING",
            ["regular_clean"],
            "CLEANING",
            {"bedrooms": bedrooms, "bathrooms": bathrooms},
            catalogue,
        )
        assert (quote.tier, quote.price) == (tier, Decimal(price))

    def test_cleaning_needs_room_count(self, catalogue):
        with pytest.raises(ValidationError, match="bedroom or bathroom"):
            cleaning_tier({}, catalogue.get_ladder("CLEANING"))

    def test_cleaning_rejects_garbage_count(self, catalogue):
        with pytest.raises(ValidationError, match="whole number"):
            cleaning_tier({"bedrooms": "lots"}, catalogue.get_ladder("CLEANING"))


class TestBuildVisits:
    """Grouping items into capability-homogeneous visits."""

    def test_groups_by_capability(self, catalogue):
        drafts = build_visits(
            ["tv_mount_standard", "tap_leak_fix", "wall_hole_fill"], catalogue
        )
        assert [d.capability_tag for d in drafts] == ["HANDYMAN", "PLUMBING"]
        handyman = drafts[0]
        assert handyman.primary_item_id == "tv_mount_standard"
        assert handyman.addon_item_ids == ["wall_hole_fill"]
        assert handyman.base_minutes == 60
        assert handyman.tier == "H2"
        assert handyman.visit_type_label.endswith("+ 1 more")

    def test_each_visit_priced_on_its_own_ladder(self, catalogue):
        drafts = build_visits(["tap_leak_fix"], catalogue)
        assert drafts[0].pricing_ladder == "SPECIALIST"
        assert drafts[0].tier == "P1"

    def test_empty_request(self, catalogue):
        with pytest.raises(ValidationError, match="At least one"):
            build_visits([], catalogue)

    def test_unknown_item(self, catalogue):
        with pytest.raises(ValidationError, match="Unknown job item"):
            build_visits(["moon_landing"], catalogue)


class TestUpgradeQuote:
    """Re-pricing after an on-site mismatch."""

    def test_bumps_to_covering_tier(self, standard_tiers):
        bumped, priced = upgrade_quote(45, 40, "H2", standard_tiers)
        assert bumped == 85
        assert priced.tier == "H3"

    def test_never_keeps_current_tier(self, standard_tiers):
        bumped, priced = upgrade_quote(20, 5, "H1", standard_tiers)
        assert bumped == 25
        assert priced.tier == "H2"

    def test_top_tier_stays(self, standard_tiers):
        _, priced = upgrade_quote(100, 60, "H3", standard_tiers)
        assert priced.tier == "H3"

    def test_extra_minutes_must_be_positive(self, standard_tiers):
        with pytest.raises(ValidationError, match="positive"):
            upgrade_quote(45, 0, "H2", standard_tiers)
