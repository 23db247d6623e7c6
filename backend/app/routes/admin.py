"""Admin routes for job management.

These routes require an admin bearer token.
"""

from typing import Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from ..auth import AdminActor
from ..database import Workflow
from ..logging_config import get_logger
from ..models import JobResponse, to_job_response
from ..rate_limit import limiter

logger = get_logger("homeflow.routes.admin")
router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# Request/Response Models
# =============================================================================


class ResolveFlagRequest(BaseModel):
    action: Literal["RETURN_TO_DISPATCH", "RESCHEDULE", "CANCEL"]
    note: str | None = Field(None, max_length=500)


class ResolveIssueRequest(BaseModel):
    resolution: str = Field(..., min_length=1, max_length=2000)
    unfreeze_timer: bool = False
    unfreeze_payout: bool = False


class ReassignRequest(BaseModel):
    provider_id: str | None = Field(
        None, description="Assign directly to this provider; omit to re-dispatch"
    )


class OverrideRequest(BaseModel):
    status: str = Field(..., min_length=1, max_length=40)
    reason: str = Field(..., min_length=1, max_length=500)


class DispatchNowResponse(BaseModel):
    job_id: str
    offered_to_id: str | None = None


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/jobs/{job_id}/resolve-flag", response_model=JobResponse)
@limiter.limit("30/minute")
def resolve_flag(
    request: Request, job_id: str, body: ResolveFlagRequest, admin: AdminActor, workflow: Workflow
):
    """Return a flagged job to dispatch, send it for rescheduling, or cancel it."""
    logger.info(f"POST /admin/jobs/{job_id}/resolve-flag | admin={admin.id} | {body.action}")
    return to_job_response(workflow.resolve_flag(job_id, admin, body.action, note=body.note))


@router.post("/jobs/{job_id}/resolve-issue", response_model=JobResponse)
@limiter.limit("30/minute")
def resolve_issue(
    request: Request, job_id: str, body: ResolveIssueRequest, admin: AdminActor, workflow: Workflow
):
    """Record a dispute resolution; the job moves to RESOLUTION_PENDING."""
    logger.info(f"POST /admin/jobs/{job_id}/resolve-issue | admin={admin.id}")
    job = workflow.resolve_issue(
        job_id,
        admin,
        body.resolution,
        unfreeze_timer=body.unfreeze_timer,
        unfreeze_payout=body.unfreeze_payout,
    )
    return to_job_response(job)


@router.post("/jobs/{job_id}/reassign", response_model=JobResponse)
@limiter.limit("30/minute")
def reassign(
    request: Request, job_id: str, body: ReassignRequest, admin: AdminActor, workflow: Workflow
):
    """Take a job off its provider."""
    logger.info(f"POST /admin/jobs/{job_id}/reassign | admin={admin.id} | to={body.provider_id}")
    return to_job_response(workflow.admin_reassign(job_id, admin, provider_id=body.provider_id))


@router.post("/jobs/{job_id}/override", response_model=JobResponse)
@limiter.limit("30/minute")
def override(
    request: Request, job_id: str, body: OverrideRequest, admin: AdminActor, workflow: Workflow
):
    """Force a legal transition with an audited reason."""
    logger.warning(f"POST /admin/jobs/{job_id}/override | admin={admin.id} | to={body.status}")
    return to_job_response(workflow.admin_override(job_id, admin, body.status, body.reason))


@router.post("/jobs/{job_id}/dispatch-now", response_model=DispatchNowResponse)
@limiter.limit("30/minute")
def dispatch_now(request: Request, job_id: str, admin: AdminActor, workflow: Workflow):
    """Advance the offer immediately, ignoring the offer window."""
    logger.info(f"POST /admin/jobs/{job_id}/dispatch-now | admin={admin.id}")
    return DispatchNowResponse(job_id=job_id, offered_to_id=workflow.admin_dispatch_now(job_id, admin))
