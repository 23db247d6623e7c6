"""Visit routes: scope lock, parts and scope mismatch."""

from dataclasses import asdict
from decimal import Decimal
from typing import Any, Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from ..auth import CurrentActor
from ..database import Workflow
from ..logging_config import get_logger
from ..models import JobResponse, PhotoUpload, VisitResponse, to_job_response, to_visit_response
from ..rate_limit import limiter

logger = get_logger("homeflow.routes.visits")
router = APIRouter(prefix="/visits", tags=["visits"])


# =============================================================================
# Request/Response Models
# =============================================================================


class ScopeLockRequest(PhotoUpload):
    """Clarifier answers and scope photos for one visit."""

    answers: dict[str, Any] = Field(default_factory=dict)


class ScopeLockResponse(BaseModel):
    visit_id: str
    job_id: str
    tier: str
    price: Decimal
    effective_minutes: int
    total_price: Decimal
    job_status: str
    all_visits_locked: bool
    offered_to_id: str | None = None


class PartItem(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    cost: Decimal = Field(..., ge=0)


class PartsRequest(PhotoUpload):
    """Provider's parts request."""

    items: list[PartItem] = Field(..., min_length=1, max_length=20)
    notes: str | None = Field(None, max_length=2000)


class PartsDecisionRequest(BaseModel):
    decision: Literal["APPROVE", "REJECT"]
    note: str | None = Field(None, max_length=2000)


class MismatchRequest(PhotoUpload):
    """Provider's report that the work differs from the locked scope."""

    reason: str = Field(..., min_length=1, max_length=500)
    extra_minutes: int = Field(..., gt=0, le=480)
    notes: str | None = Field(None, max_length=2000)


class MismatchResolutionRequest(BaseModel):
    decision: Literal["UPGRADE", "REBOOK"]


class MismatchResolutionResponse(BaseModel):
    visit_id: str
    decision: str
    job_status: str
    total_price: Decimal
    tier: str | None = None
    price: Decimal | None = None
    effective_minutes: int | None = None
    replacement_visit_id: str | None = None


# =============================================================================
# Scope Lock
# =============================================================================


@router.post("/{visit_id}/scope-lock", response_model=ScopeLockResponse)
@limiter.limit("20/minute")
def lock_scope(
    request: Request, visit_id: str, body: ScopeLockRequest, actor: CurrentActor, workflow: Workflow
):
    """
    Lock a visit's scope and price.

    Happens once per visit. When the last visit locks, the job heads to dispatch.
    """
    logger.info(f"POST /visits/{visit_id}/scope-lock | customer={actor.id} | answers={len(body.answers)}")
    result = workflow.lock_visit_scope(
        visit_id, actor, answers=body.answers, photos=body.photo_bytes()
    )
    return ScopeLockResponse(**asdict(result))


# =============================================================================
# Parts
# =============================================================================


@router.post("/{visit_id}/parts-request", response_model=VisitResponse)
@limiter.limit("10/minute")
def request_parts(
    request: Request, visit_id: str, body: PartsRequest, actor: CurrentActor, workflow: Workflow
):
    """Ask the customer to approve parts. Pauses the work timer."""
    logger.info(f"POST /visits/{visit_id}/parts-request | provider={actor.id} | items={len(body.items)}")
    visit = workflow.request_parts(
        visit_id,
        actor,
        [item.model_dump() for item in body.items],
        notes=body.notes,
        photos=body.photo_bytes(),
    )
    return to_visit_response(visit)


@router.post("/{visit_id}/parts-decision", response_model=VisitResponse)
@limiter.limit("10/minute")
def decide_parts(
    request: Request,
    visit_id: str,
    body: PartsDecisionRequest,
    actor: CurrentActor,
    workflow: Workflow,
):
    """Approve or reject a pending parts request."""
    logger.info(f"POST /visits/{visit_id}/parts-decision | customer={actor.id} | {body.decision}")
    return to_visit_response(workflow.decide_parts(visit_id, actor, body.decision, note=body.note))


@router.post("/{visit_id}/resume", response_model=JobResponse)
@limiter.limit("10/minute")
def resume_work(request: Request, visit_id: str, actor: CurrentActor, workflow: Workflow):
    """Resume work after parts were approved."""
    logger.info(f"POST /visits/{visit_id}/resume | provider={actor.id}")
    return to_job_response(workflow.resume_work(visit_id, actor))


# =============================================================================
# Scope Mismatch
# =============================================================================


@router.post("/{visit_id}/mismatch", response_model=JobResponse)
@limiter.limit("10/minute")
def report_mismatch(
    request: Request, visit_id: str, body: MismatchRequest, actor: CurrentActor, workflow: Workflow
):
    """Report that the on-site work differs from the locked scope."""
    logger.info(f"POST /visits/{visit_id}/mismatch | provider={actor.id} | +{body.extra_minutes}min")
    job = workflow.report_mismatch(
        visit_id,
        actor,
        body.reason,
        body.extra_minutes,
        notes=body.notes,
        photos=body.photo_bytes(),
    )
    return to_job_response(job)


@router.post("/{visit_id}/mismatch-resolution", response_model=MismatchResolutionResponse)
@limiter.limit("10/minute")
def resolve_mismatch(
    request: Request,
    visit_id: str,
    body: MismatchResolutionRequest,
    actor: CurrentActor,
    workflow: Workflow,
):
    """Choose UPGRADE (re-price and continue) or REBOOK (new visit, new booking)."""
    logger.info(f"POST /visits/{visit_id}/mismatch-resolution | actor={actor.id} | {body.decision}")
    result = workflow.resolve_mismatch(visit_id, actor, body.decision)
    return MismatchResolutionResponse(**asdict(result))
