"""Administrator operations and maintenance reads."""

import logging
from enum import Enum
from typing import List, Optional

from homeflow.errors import ConflictError, ProviderNotFoundError, ValidationError
from homeflow.jobs.models import (
    CANCELLED_STATUSES,
    DISPATCH_STATUS,
    Actor,
    Job,
    JobStateChange,
    JobStatus,
    Provider,
    ProviderStatus,
    Role,
    resume_timer_fields,
)
from homeflow.jobs.stuck import StuckReport, find_stuck_jobs
from homeflow.workflow.base import WorkflowBase
from homeflow.workflow.interruptions import CLEARED_FLAG_FIELDS
from homeflow.workflow.policy import require_admin, require_role, require_status

logger = logging.getLogger(__name__)

# Targets owned by acceptance, the ledger, closing or cancellation
OVERRIDE_BLOCKED = frozenset(
    {JobStatus.ASSIGNED, JobStatus.CAPTURED, JobStatus.PAID_OUT, JobStatus.CLOSED}
    | CANCELLED_STATUSES
)

ISSUE_STATUSES = (
    JobStatus.ISSUE_REPORTED,
    JobStatus.ISSUE_RAISED_BY_CUSTOMER,
    JobStatus.ISSUE_RAISED_BY_PROVIDER,
)

REASSIGNABLE_STATUSES = (JobStatus.ASSIGNING, JobStatus.ASSIGNED, JobStatus.PREAUTHORISED)


class FlagAction(str, Enum):
    RETURN_TO_DISPATCH = "RETURN_TO_DISPATCH"
    RESCHEDULE = "RESCHEDULE"
    CANCEL = "CANCEL"


class AdminMixin(WorkflowBase):
    """Flag and issue resolution, reassignment, overrides and maintenance."""

    # =========================================================================
    # FLAGS AND ISSUES
    # =========================================================================

    def resolve_flag(
        self, job_id: str, actor: Actor, action: str, note: Optional[str] = None
    ) -> Job:
        """Decide what happens to a flagged job."""
        require_admin(actor)
        try:
            action = FlagAction(str(action).upper())
        except ValueError:
            allowed = ", ".join(a.value for a in FlagAction)
            raise ValidationError(f"Action must be one of: {allowed}") from None
        note = self._validate_text(note, "Note", required=False, max_length=500)

        if action == FlagAction.CANCEL:
            with self.store.transaction() as session:
                job = self._load_job(session, job_id)
                require_status(job, [JobStatus.FLAGGED_REVIEW], "resolve flag")
                job, _ = self._cancel_in_session(
                    session,
                    job,
                    actor,
                    note or "Cancelled after flag review",
                    waive_fee=True,
                    updates=dict(CLEARED_FLAG_FIELDS),
                )
            logger.info(f"Flag on job {job_id} resolved with {action.value}")
            return job

        target = (
            JobStatus.ASSIGNING
            if action == FlagAction.RETURN_TO_DISPATCH
            else JobStatus.RESCHEDULE_REQUIRED
        )
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            require_status(job, [JobStatus.FLAGGED_REVIEW], "resolve flag")
            updates = dict(CLEARED_FLAG_FIELDS)
            updates["provider_id"] = None
            job = self.state_machine.apply_status_change(
                job_id,
                target,
                actor,
                reason=note or f"Flag resolved: {action.value}",
                updates=updates,
                session=session,
            )
        if target == DISPATCH_STATUS:
            self._dispatch_after_commit(job_id)
            job = self.store.get_job(job_id)
        logger.info(f"Flag on job {job_id} resolved with {action.value}")
        return job

    def resolve_issue(
        self,
        job_id: str,
        actor: Actor,
        resolution: str,
        unfreeze_timer: bool = False,
        unfreeze_payout: bool = False,
    ) -> Job:
        """Record an admin resolution and move the job to RESOLUTION_PENDING."""
        require_admin(actor)
        resolution = self._validate_text(resolution, "Resolution")
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            require_status(job, ISSUE_STATUSES, "resolve issue")
            updates = {"issue_resolution": resolution, "issue_resolved_at": self.clock()}
            if unfreeze_timer:
                updates["timer_frozen_for_issue"] = False
            if unfreeze_payout:
                updates["payout_frozen"] = False
            job = self.state_machine.apply_status_change(
                job_id,
                JobStatus.RESOLUTION_PENDING,
                actor,
                reason=resolution,
                updates=updates,
                session=session,
            )
        logger.info(f"Issue on job {job_id} resolved by admin {actor.id}")
        return job

    # =========================================================================
    # ASSIGNMENT
    # =========================================================================

    def admin_reassign(
        self, job_id: str, actor: Actor, provider_id: Optional[str] = None
    ) -> Job:
        """Take the job off its provider.

        With ``provider_id`` the job is assigned straight to that ACTIVE
        provider. Without it the job returns to dispatch and one offer step
        runs. The previous provider is not offered the job again.
        """
        require_admin(actor)
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            require_status(job, REASSIGNABLE_STATUSES, "reassign")
            if provider_id is not None:
                provider = session.get_provider(provider_id)
                if provider is None:
                    raise ProviderNotFoundError(provider_id)
                if provider.status != ProviderStatus.ACTIVE.value:
                    raise ValidationError(f"Provider {provider_id} is not active")
                if provider_id == job.provider_id:
                    raise ValidationError(f"Job is already assigned to {provider_id}")

            previous = job.provider_id
            declined = [p for p in job.declined_provider_ids if p != provider_id]
            if previous and previous not in declined:
                declined.append(previous)
            if job.status != DISPATCH_STATUS.value:
                job = self.state_machine.apply_status_change(
                    job_id,
                    DISPATCH_STATUS,
                    actor,
                    reason=f"Reassigned by admin from {previous}",
                    updates={
                        "provider_id": None,
                        "accepted_at": None,
                        "preauth_reference": None,
                        "declined_provider_ids": declined,
                    },
                    session=session,
                )
            if provider_id is not None:
                job = self.state_machine.apply_status_change(
                    job_id,
                    JobStatus.ASSIGNED,
                    actor,
                    reason=f"Assigned by admin to {provider_id}",
                    updates={"provider_id": provider_id, "declined_provider_ids": declined},
                    session=session,
                )
        if provider_id is None:
            self._dispatch_after_commit(job_id, force=True)
            job = self.store.get_job(job_id)
        logger.info(
            f"Job {job_id} reassigned by admin: provider={job.provider_id} offer={job.offered_to_id}"
        )
        return job

    def admin_dispatch_now(self, job_id: str, actor: Actor) -> Optional[str]:
        """Advance a dispatching job's offer immediately."""
        require_admin(actor)
        with self.store.reader() as reader:
            require_status(self._load_job(reader, job_id), [DISPATCH_STATUS], "dispatch")
        return self.dispatch.dispatch_job(job_id, force=True)

    # =========================================================================
    # OVERRIDE
    # =========================================================================

    def admin_override(self, job_id: str, actor: Actor, target: str, reason: str) -> Job:
        """Force a structurally legal transition with an audited reason.

        Ledger and closing steps keep their dedicated operations. Forcing a
        job back to IN_PROGRESS lifts any issue freeze and restarts the timer.
        """
        require_admin(actor)
        reason = self._validate_text(reason, "Reason", max_length=500)
        try:
            target_status = JobStatus(str(target).upper())
        except ValueError:
            raise ValidationError(f"Unknown status: {target}") from None
        if target_status in OVERRIDE_BLOCKED:
            raise ValidationError(
                f"{target_status.value} must be set through its dedicated operation"
            )
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            updates = {}
            if job.status == JobStatus.FLAGGED_REVIEW.value:
                updates.update(CLEARED_FLAG_FIELDS)
            if target_status == JobStatus.IN_PROGRESS:
                updates.update(resume_timer_fields(job, self.clock()))
                updates["timer_frozen_for_issue"] = False
            if target_status == DISPATCH_STATUS:
                updates["provider_id"] = None
            job = self.state_machine.apply_status_change(
                job_id,
                target_status,
                actor,
                reason=f"Admin override: {reason}",
                updates=updates,
                session=session,
            )
        logger.warning(f"Admin {actor.id} overrode job {job_id} to {target_status.value}: {reason}")
        return job

    # =========================================================================
    # PROVIDERS AND MAINTENANCE
    # =========================================================================

    def set_provider_online(self, actor: Actor, is_online: bool) -> Provider:
        """Provider toggles availability for offers."""
        require_role(actor, Role.PROVIDER)
        with self.store.transaction() as session:
            if session.set_provider_online(actor.id, bool(is_online)) == 0:
                raise ProviderNotFoundError(actor.id)
            provider = session.get_provider(actor.id)
        logger.info(f"Provider {actor.id} is now {'online' if is_online else 'offline'}")
        return provider

    def list_stuck_jobs(self, actor: Actor) -> List[StuckReport]:
        """Jobs sitting in a status beyond its threshold. Advisory only."""
        require_role(actor, Role.ADMIN, Role.SYSTEM)
        thresholds = self.config.stuck_minutes
        jobs = self.store.list_jobs(statuses=list(thresholds))
        return find_stuck_jobs(jobs, self.clock(), thresholds)

    def job_history(self, job_id: str, actor: Actor) -> List[JobStateChange]:
        """Audit trail of a job, oldest first."""
        require_admin(actor)
        with self.store.reader() as reader:
            self._load_job(reader, job_id)
        return self.store.list_state_changes(job_id)

    def _dispatch_after_commit(self, job_id: str, force: bool = False) -> Optional[str]:
        try:
            return self.dispatch.dispatch_job(job_id, force=force)
        except ConflictError as e:
            logger.info(f"Dispatch for job {job_id} skipped: {e.reason}")
            return None
