"""Maintenance routes.

Called periodically (e.g. by cron) to keep dispatch moving:
- Activate booked jobs whose dispatch window has opened
- Advance offers whose window has expired

Authenticated by the ``X-Maintenance-Token`` header or an admin token.
"""

from dataclasses import asdict

from fastapi import APIRouter, Request
from pydantic import BaseModel

from ..auth import MaintenanceActor
from ..database import Workflow
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("homeflow.routes.maintenance")
router = APIRouter(prefix="/maintenance", tags=["maintenance"])


# =============================================================================
# Response Models
# =============================================================================


class SweepAction(BaseModel):
    """One job touched by a sweep."""

    job_id: str
    action: str
    provider_id: str | None = None
    detail: str | None = None


class SweepResponse(BaseModel):
    activated: list[SweepAction]
    progressed: list[SweepAction]


class StuckJobResponse(BaseModel):
    job_id: str
    status: str
    age_minutes: int
    threshold_minutes: int


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/dispatch-sweep", response_model=SweepResponse)
@limiter.limit("120/minute")
def dispatch_sweep(request: Request, actor: MaintenanceActor, workflow: Workflow):
    """Run the activation and offer-progress sweeps once."""
    logger.info(f"POST /maintenance/dispatch-sweep | actor={actor.role.value}:{actor.id}")
    result = workflow.run_dispatch_sweep()
    response = SweepResponse(
        activated=[SweepAction(**asdict(a)) for a in result["activated"]],
        progressed=[SweepAction(**asdict(a)) for a in result["progressed"]],
    )
    logger.info(
        f"Dispatch sweep done | activated={len(response.activated)} | progressed={len(response.progressed)}"
    )
    return response


@router.get("/stuck-jobs", response_model=list[StuckJobResponse])
@limiter.limit("30/minute")
def stuck_jobs(request: Request, actor: MaintenanceActor, workflow: Workflow):
    """Jobs that have sat in their status too long. Advisory only."""
    logger.info(f"GET /maintenance/stuck-jobs | actor={actor.role.value}:{actor.id}")
    return [StuckJobResponse(**asdict(r)) for r in workflow.list_stuck_jobs(actor)]
