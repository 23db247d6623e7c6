"""Catalogue routes (read-only)."""

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from homeflow.catalogue.source import clarifiers_for

from ..database import Workflow
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("homeflow.routes.catalogue")
router = APIRouter(prefix="/catalogue", tags=["catalogue"])


class ClarifierResponse(BaseModel):
    clarifier_id: str
    question: str
    input_type: str
    options: list[str]


@router.get("/clarifiers", response_model=list[ClarifierResponse])
@limiter.limit("60/minute")
def get_clarifiers(
    request: Request,
    workflow: Workflow,
    item_ids: list[str] = Query(..., alias="item_id"),
):
    """Questions the customer answers before locking scope for these items."""
    logger.info(f"GET /catalogue/clarifiers | items={len(item_ids)}")
    return [
        ClarifierResponse(
            clarifier_id=c.clarifier_id,
            question=c.question,
            input_type=c.input_type,
            options=c.options,
        )
        for c in clarifiers_for(workflow.catalogue, item_ids)
    ]
