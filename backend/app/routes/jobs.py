"""Job routes.

Endpoints for the customer/provider side of the job lifecycle. Domain
errors propagate to the handlers registered in ``app.main``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Request, status
from pydantic import BaseModel, Field

from ..auth import CurrentActor
from ..database import Workflow
from ..logging_config import get_logger
from ..models import (
    JobResponse,
    PhotoUpload,
    ReasonRequest,
    StateChangeResponse,
    VisitResponse,
    to_job_response,
    to_state_change_response,
    to_visit_response,
)
from ..rate_limit import limiter

logger = get_logger("homeflow.routes.jobs")
router = APIRouter(prefix="/jobs", tags=["jobs"])


# =============================================================================
# Request/Response Models
# =============================================================================


class JobCreate(BaseModel):
    """Request to create and quote a job."""

    description: str = Field(..., min_length=1, max_length=2000)
    item_ids: list[str] = Field(..., min_length=1, max_length=20)
    location: str = Field("", max_length=500)
    is_asap: bool = False
    scheduled_at: datetime | None = None
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)


class QuoteResponse(BaseModel):
    """A freshly priced job."""

    job: JobResponse
    visits: list[VisitResponse]
    total_price: Decimal


class ScheduleRequest(BaseModel):
    """New slot for rescheduling or rebooking."""

    is_asap: bool = False
    scheduled_at: datetime | None = None


class CancelRequest(ReasonRequest):
    """Request to cancel a job."""

    waive_fee: bool = Field(False, description="Admin only: cancel without a fee")


class StatusChangeRequest(BaseModel):
    """Generic status change."""

    status: str = Field(..., min_length=1, max_length=40)
    extra: dict[str, Any] = Field(default_factory=dict)


class FlagRequest(PhotoUpload):
    """Request to send a job to admin review."""

    reason: str = Field(..., description="safety_issue, wrong_capability, scope_too_large or photo_mismatch")
    note: str | None = Field(None, max_length=2000)


class IssueRequest(PhotoUpload):
    """Request to raise a dispute. At least one photo is required."""

    reason_code: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=2000)


class ReviewRequest(BaseModel):
    """Customer or admin review."""

    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=2000)


class ReviewResponse(BaseModel):
    job_id: str
    kind: str
    reviewer_id: str
    rating: int
    comment: str | None = None


class OfferResponse(BaseModel):
    """Where the offer went after a decline."""

    job_id: str
    offered_to_id: str | None = None


# =============================================================================
# Quote and Booking
# =============================================================================


@router.post("", response_model=QuoteResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_job(request: Request, body: JobCreate, actor: CurrentActor, workflow: Workflow):
    """
    Create a job from catalogue items and quote it.

    One draft visit is created per capability group; the job is PRICED.
    """
    logger.info(f"POST /jobs | customer={actor.id} | items={len(body.item_ids)}")
    quote = workflow.create_job(
        actor,
        body.description,
        body.item_ids,
        location=body.location,
        is_asap=body.is_asap,
        scheduled_at=body.scheduled_at,
        latitude=body.latitude,
        longitude=body.longitude,
    )
    return QuoteResponse(
        job=to_job_response(quote.job, quote.visits),
        visits=[to_visit_response(v) for v in quote.visits],
        total_price=quote.total_price,
    )


@router.get("/{job_id}", response_model=JobResponse)
@limiter.limit("60/minute")
def get_job(request: Request, job_id: str, actor: CurrentActor, workflow: Workflow):
    """Get a job and its visits."""
    logger.info(f"GET /jobs/{job_id} | actor={actor.role.value}:{actor.id}")
    job, visits = workflow.get_job(job_id, actor)
    return to_job_response(job, visits)


@router.get("/{job_id}/history", response_model=list[StateChangeResponse])
@limiter.limit("60/minute")
def get_job_history(request: Request, job_id: str, actor: CurrentActor, workflow: Workflow):
    """Audit trail of status changes (admin)."""
    logger.info(f"GET /jobs/{job_id}/history | actor={actor.id}")
    return [to_state_change_response(c) for c in workflow.job_history(job_id, actor)]


@router.get("/{job_id}/evidence", response_model=dict[str, list[str]])
@limiter.limit("30/minute")
def get_job_evidence(request: Request, job_id: str, actor: CurrentActor, workflow: Workflow):
    """Signed, expiring URLs for the job's photos, grouped by scope/parts/mismatch/flag/issue."""
    logger.info(f"GET /jobs/{job_id}/evidence | actor={actor.role.value}:{actor.id}")
    return workflow.evidence_urls(job_id, actor)


@router.post("/{job_id}/book", response_model=JobResponse)
@limiter.limit("20/minute")
def book_job(request: Request, job_id: str, actor: CurrentActor, workflow: Workflow):
    """Accept the quote."""
    logger.info(f"POST /jobs/{job_id}/book | customer={actor.id}")
    return to_job_response(workflow.book_job(job_id, actor))


@router.post("/{job_id}/reschedule", response_model=JobResponse)
@limiter.limit("20/minute")
def reschedule_job(
    request: Request, job_id: str, body: ScheduleRequest, actor: CurrentActor, workflow: Workflow
):
    """Pick a new slot for a job that could not be dispatched."""
    logger.info(f"POST /jobs/{job_id}/reschedule | actor={actor.id} | asap={body.is_asap}")
    job = workflow.reschedule_job(job_id, actor, is_asap=body.is_asap, scheduled_at=body.scheduled_at)
    return to_job_response(job)


@router.post("/{job_id}/rebook", response_model=JobResponse)
@limiter.limit("20/minute")
def rebook_job(
    request: Request, job_id: str, body: ScheduleRequest, actor: CurrentActor, workflow: Workflow
):
    """Book again after a scope mismatch was resolved by rebooking."""
    logger.info(f"POST /jobs/{job_id}/rebook | actor={actor.id} | asap={body.is_asap}")
    job = workflow.rebook_job(job_id, actor, is_asap=body.is_asap, scheduled_at=body.scheduled_at)
    return to_job_response(job)


# =============================================================================
# Offers
# =============================================================================


@router.post("/{job_id}/accept", response_model=JobResponse)
@limiter.limit("30/minute")
def accept_job(request: Request, job_id: str, actor: CurrentActor, workflow: Workflow):
    """
    Accept the offer you currently hold.

    Returns 409 if another provider got there first or the job left dispatch.
    """
    logger.info(f"POST /jobs/{job_id}/accept | provider={actor.id}")
    return to_job_response(workflow.accept_job(job_id, actor))


@router.post("/{job_id}/decline", response_model=OfferResponse)
@limiter.limit("30/minute")
def decline_job(
    request: Request,
    job_id: str,
    actor: CurrentActor,
    workflow: Workflow,
    body: ReasonRequest | None = None,
):
    """Decline the offer; it moves to the next eligible provider at once."""
    logger.info(f"POST /jobs/{job_id}/decline | provider={actor.id}")
    next_provider = workflow.decline_job(job_id, actor, reason=body.reason if body else None)
    return OfferResponse(job_id=job_id, offered_to_id=next_provider)


# =============================================================================
# Progress and Interruptions
# =============================================================================


@router.post("/{job_id}/status", response_model=JobResponse)
@limiter.limit("30/minute")
def change_status(
    request: Request, job_id: str, body: StatusChangeRequest, actor: CurrentActor, workflow: Workflow
):
    """Generic status change (provider progress steps and delegated operations)."""
    logger.info(f"POST /jobs/{job_id}/status | actor={actor.role.value}:{actor.id} | to={body.status}")
    return to_job_response(workflow.change_status(job_id, body.status, actor, extra=body.extra))


@router.post("/{job_id}/cancel", response_model=JobResponse)
@limiter.limit("10/minute")
def cancel_job(
    request: Request,
    job_id: str,
    actor: CurrentActor,
    workflow: Workflow,
    body: CancelRequest | None = None,
):
    """Cancel a job. A fee applies once a provider is committed."""
    logger.info(f"POST /jobs/{job_id}/cancel | actor={actor.role.value}:{actor.id}")
    body = body or CancelRequest()
    job = workflow.cancel_job(job_id, actor, reason=body.reason, waive_fee=body.waive_fee)
    return to_job_response(job)


@router.post("/{job_id}/flag", response_model=JobResponse)
@limiter.limit("10/minute")
def flag_job(
    request: Request, job_id: str, body: FlagRequest, actor: CurrentActor, workflow: Workflow
):
    """Send a job to admin review."""
    logger.info(f"POST /jobs/{job_id}/flag | actor={actor.id} | reason={body.reason}")
    job = workflow.flag_job(job_id, actor, body.reason, note=body.note, photos=body.photo_bytes())
    return to_job_response(job)


@router.post("/{job_id}/issue", response_model=JobResponse)
@limiter.limit("10/minute")
def raise_issue(
    request: Request, job_id: str, body: IssueRequest, actor: CurrentActor, workflow: Workflow
):
    """Raise a dispute with photo evidence."""
    logger.info(f"POST /jobs/{job_id}/issue | actor={actor.role.value}:{actor.id}")
    job = workflow.raise_issue(
        job_id, actor, body.reason_code, description=body.description, photos=body.photo_bytes()
    )
    return to_job_response(job)


# =============================================================================
# Payments, Reviews and Closing
# =============================================================================


@router.post("/{job_id}/preauth", response_model=JobResponse)
@limiter.limit("10/minute")
def preauthorise(request: Request, job_id: str, actor: CurrentActor, workflow: Workflow):
    """Pre-authorise payment for an assigned job."""
    logger.info(f"POST /jobs/{job_id}/preauth | customer={actor.id}")
    return to_job_response(workflow.preauthorise(job_id, actor))


@router.post("/{job_id}/capture", response_model=JobResponse)
@limiter.limit("10/minute")
def capture_payment(request: Request, job_id: str, actor: CurrentActor, workflow: Workflow):
    """Capture payment for a completed job."""
    logger.info(f"POST /jobs/{job_id}/capture | actor={actor.role.value}:{actor.id}")
    return to_job_response(workflow.capture_payment(job_id, actor))


@router.post("/{job_id}/payout", response_model=JobResponse)
@limiter.limit("10/minute")
def payout(request: Request, job_id: str, actor: CurrentActor, workflow: Workflow):
    """Release the provider's payout (admin)."""
    logger.info(f"POST /jobs/{job_id}/payout | admin={actor.id}")
    return to_job_response(workflow.payout(job_id, actor))


@router.post("/{job_id}/reviews", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def submit_review(
    request: Request, job_id: str, body: ReviewRequest, actor: CurrentActor, workflow: Workflow
):
    """Leave a customer review, or an admin review when called by an admin."""
    logger.info(f"POST /jobs/{job_id}/reviews | actor={actor.role.value}:{actor.id} | rating={body.rating}")
    review = workflow.submit_review(job_id, actor, body.rating, comment=body.comment)
    return ReviewResponse(
        job_id=review.job_id,
        kind=review.kind,
        reviewer_id=review.reviewer_id,
        rating=review.rating,
        comment=review.comment,
    )


@router.post("/{job_id}/close", response_model=JobResponse)
@limiter.limit("10/minute")
def close_job(
    request: Request,
    job_id: str,
    actor: CurrentActor,
    workflow: Workflow,
    body: ReasonRequest | None = None,
):
    """Close a reviewed job (admin)."""
    logger.info(f"POST /jobs/{job_id}/close | admin={actor.id}")
    reason = body.reason if body else None
    return to_job_response(workflow.close_job(job_id, actor, reason=reason))
