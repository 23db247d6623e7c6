"""Pricing routes: quote items without creating a job."""

from decimal import Decimal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from ..database import Workflow
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("homeflow.routes.pricing")
router = APIRouter(prefix="/pricing", tags=["pricing"])


class PreviewRequest(BaseModel):
    item_ids: list[str] = Field(..., min_length=1, max_length=20)


class VisitPreview(BaseModel):
    capability_tag: str
    primary_item_id: str
    addon_item_ids: list[str]
    visit_type_label: str
    pricing_ladder: str
    base_minutes: int
    tier: str
    price: Decimal


class PreviewResponse(BaseModel):
    visits: list[VisitPreview]
    total_price: Decimal


@router.post("/preview", response_model=PreviewResponse)
@limiter.limit("30/minute")
def preview(request: Request, body: PreviewRequest, workflow: Workflow):
    """Draft visits and total price for these items. Nothing is stored."""
    logger.info(f"POST /pricing/preview | items={len(body.item_ids)}")
    result = workflow.preview_quote(body.item_ids)
    return PreviewResponse(
        visits=[
            VisitPreview(
                capability_tag=d.capability_tag,
                primary_item_id=d.primary_item_id,
                addon_item_ids=d.addon_item_ids,
                visit_type_label=d.visit_type_label,
                pricing_ladder=d.pricing_ladder,
                base_minutes=d.base_minutes,
                tier=d.tier,
                price=d.price,
            )
            for d in result.visits
        ],
        total_price=result.total_price,
    )
