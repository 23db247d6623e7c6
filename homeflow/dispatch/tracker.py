"""Periodic dispatch sweeps.

Both sweeps are safe to run repeatedly; with nothing to do they change
nothing. They are meant to be triggered on an external interval shorter
than the offer timeout.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from homeflow.config import HomeflowConfig
from homeflow.dispatch.engine import DispatchEngine
from homeflow.errors import ConflictError, InvalidTransitionError, NotFoundError
from homeflow.jobs.models import DISPATCH_STATUS, Actor, Job, JobStatus, Visit, VisitStatus
from homeflow.jobs.state_machine import JobStateMachine, utc_now
from homeflow.storage.sqlite import SQLiteStore

logger = logging.getLogger(__name__)

ACTIVATABLE_STATUSES = (JobStatus.BOOKED.value, JobStatus.WAITING_FOR_DISPATCH.value)


@dataclass(frozen=True)
class DispatchAction:
    """One thing a sweep did (or skipped) for a job."""

    job_id: str
    action: str  # started, advanced, no_providers, activated, skipped
    provider_id: Optional[str] = None
    detail: Optional[str] = None


def in_dispatch_window(job: Job, now: datetime, lead_minutes: int) -> bool:
    """ASAP jobs dispatch at once; scheduled jobs once the lead window opens."""
    if job.is_asap:
        return True
    if job.scheduled_at is None:
        return False
    return now >= job.scheduled_at - timedelta(minutes=lead_minutes)


def scope_fully_locked(visits: List[Visit]) -> bool:
    live = [v for v in visits if not v.is_cancelled]
    return bool(live) and all(v.status == VisitStatus.SCHEDULED.value for v in live)


class DispatchTracker:
    """Sweeps that keep dispatch moving without an in-process scheduler."""

    def __init__(
        self,
        store: SQLiteStore,
        engine: DispatchEngine,
        state_machine: JobStateMachine,
        config: Optional[HomeflowConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.engine = engine
        self.state_machine = state_machine
        self.config = config or HomeflowConfig()
        self.clock = clock

    def ensure_dispatch_progress(self) -> List[DispatchAction]:
        """Start or advance offers on every dispatching job."""
        actions = []
        now = self.clock()
        for job in self.store.list_jobs(statuses=[DISPATCH_STATUS.value]):
            if self.engine.offer_is_live(job, now):
                continue
            had_offer = job.offered_to_id is not None
            try:
                provider_id = self.engine.dispatch_job(job.id)
            except (ConflictError, NotFoundError) as e:
                logger.info(f"Skipped dispatch for job {job.id}: {e.reason}")
                actions.append(DispatchAction(job.id, "skipped", detail=e.reason))
                continue
            if provider_id is None:
                actions.append(DispatchAction(job.id, "no_providers"))
            else:
                actions.append(
                    DispatchAction(job.id, "advanced" if had_offer else "started", provider_id)
                )
        if actions:
            logger.info(f"Dispatch progress sweep: {len(actions)} job(s) touched")
        else:
            logger.debug("Dispatch progress sweep: nothing to do")
        return actions

    def activate_booked_jobs(self) -> List[DispatchAction]:
        """Promote fully locked booked/waiting jobs whose window has opened."""
        actions = []
        now = self.clock()
        for job in self.store.list_jobs(statuses=ACTIVATABLE_STATUSES):
            if not scope_fully_locked(self.store.list_visits(job.id)):
                continue
            if not in_dispatch_window(job, now, self.config.activation_lead_minutes):
                continue
            try:
                self.state_machine.apply_status_change(
                    job.id,
                    JobStatus.ASSIGNING,
                    Actor.system(),
                    reason="Dispatch window opened" if not job.is_asap else "ASAP job activated",
                )
            except (InvalidTransitionError, ConflictError) as e:
                # Another sweep or a cancellation got there first
                logger.info(f"Skipped activation for job {job.id}: {e.reason}")
                actions.append(DispatchAction(job.id, "skipped", detail=e.reason))
                continue
            try:
                provider_id = self.engine.dispatch_job(job.id)
            except ConflictError as e:
                actions.append(DispatchAction(job.id, "activated", detail=e.reason))
                continue
            actions.append(DispatchAction(job.id, "activated", provider_id))
        if actions:
            logger.info(f"Activation sweep: {len(actions)} job(s) touched")
        return actions

    def run_once(self) -> Dict[str, List[DispatchAction]]:
        """Run both sweeps, activation first so new jobs get their first offer."""
        activated = self.activate_booked_jobs()
        progressed = self.ensure_dispatch_progress()
        return {"activated": activated, "progressed": progressed}
