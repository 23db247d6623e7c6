"""Read-only catalogue source.

The catalogue is maintained elsewhere; homeflow only reads it. The bundled
``default_catalogue.json`` is used when no other document is configured.
"""

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

from homeflow.catalogue.models import CatalogueItem, Clarifier, PricingTier
from homeflow.errors import NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_CATALOGUE_PATH = Path(__file__).parent / "default_catalogue.json"


class CatalogueSource(Protocol):
    """Lookup interface for items, ladders and clarifiers."""

    def get_item(self, job_item_id: str) -> CatalogueItem:
        """Get an item. Raises NotFoundError for unknown ids."""
        ...

    def get_ladder(self, ladder: str) -> List[PricingTier]:
        """Get a ladder's tiers sorted ascending by max minutes."""
        ...

    def get_clarifier(self, clarifier_id: str) -> Optional[Clarifier]:
        """Get a clarifier question, if defined."""
        ...


class JsonCatalogue:
    """Catalogue backed by an in-memory copy of a JSON document."""

    def __init__(
        self,
        items: Iterable[CatalogueItem],
        tiers: Iterable[PricingTier],
        clarifiers: Iterable[Clarifier] = (),
    ):
        self._items: Dict[str, CatalogueItem] = {i.job_item_id: i for i in items}
        self._ladders: Dict[str, List[PricingTier]] = {}
        for tier in tiers:
            self._ladders.setdefault(tier.ladder, []).append(tier)
        for ladder in self._ladders.values():
            ladder.sort(key=lambda t: t.sort_key)
        self._clarifiers: Dict[str, Clarifier] = {c.clarifier_id: c for c in clarifiers}

        for item in self._items.values():
            if item.pricing_ladder not in self._ladders:
                raise ValueError(
                    f"Item {item.job_item_id} references unknown ladder {item.pricing_ladder}"
                )

    # === Construction ===

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JsonCatalogue":
        items = [
            CatalogueItem(
                job_item_id=raw["job_item_id"],
                display_name=raw.get("display_name", raw["job_item_id"]),
                capability_tag=raw.get("capability_tag") or "HANDYMAN",
                default_minutes=int(raw["default_minutes"]),
                pricing_ladder=raw.get("pricing_ladder", "STANDARD"),
                uncertainty_prone=bool(raw.get("uncertainty_prone", False)),
                uncertainty_handling=raw.get("uncertainty_handling", "IGNORE"),
                risk_buffer_minutes=int(raw.get("risk_buffer_minutes", 0)),
                clarifier_ids=list(raw.get("clarifier_ids", [])),
            )
            for raw in data.get("items", [])
        ]
        tiers = [
            PricingTier(
                tier=raw["tier"],
                ladder=raw["ladder"],
                price=Decimal(str(raw["price"])),
                max_minutes=raw.get("max_minutes"),
            )
            for raw in data.get("tiers", [])
        ]
        clarifiers = [
            Clarifier(
                clarifier_id=raw["clarifier_id"],
                question=raw["question"],
                input_type=raw.get("input_type", "choice"),
                options=list(raw.get("options", [])),
            )
            for raw in data.get("clarifiers", [])
        ]
        return cls(items, tiers, clarifiers)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "JsonCatalogue":
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        catalogue = cls.from_dict(data)
        logger.info(
            f"Loaded catalogue from {path}: {len(catalogue._items)} items, "
            f"{len(catalogue._ladders)} ladders"
        )
        return catalogue

    @classmethod
    def default(cls) -> "JsonCatalogue":
        """The bundled catalogue."""
        return cls.from_file(DEFAULT_CATALOGUE_PATH)

    # === Lookups ===

    def get_item(self, job_item_id: str) -> CatalogueItem:
        item = self._items.get(job_item_id)
        if item is None:
            raise NotFoundError(f"Unknown job item: {job_item_id}")
        return item

    def get_ladder(self, ladder: str) -> List[PricingTier]:
        tiers = self._ladders.get(ladder)
        if not tiers:
            raise NotFoundError(f"Unknown pricing ladder: {ladder}")
        return list(tiers)

    def get_clarifier(self, clarifier_id: str) -> Optional[Clarifier]:
        return self._clarifiers.get(clarifier_id)

    def list_items(self) -> List[CatalogueItem]:
        return sorted(self._items.values(), key=lambda i: i.job_item_id)


def clarifiers_for(catalogue: CatalogueSource, item_ids: Iterable[str]) -> List[Clarifier]:
    """Questions the customer should answer before locking these items.

    Each clarifier appears once, in first-seen order. Unknown clarifier ids
    are skipped with a warning.
    """
    seen = set()
    result = []
    for item_id in item_ids:
        item = catalogue.get_item(item_id)
        for clarifier_id in item.clarifier_ids:
            if clarifier_id in seen:
                continue
            seen.add(clarifier_id)
            clarifier = catalogue.get_clarifier(clarifier_id)
            if clarifier is None:
                logger.warning(f"Item {item_id} references unknown clarifier {clarifier_id}")
                continue
            result.append(clarifier)
    return result
