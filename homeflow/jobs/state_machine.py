"""Job state machine executor.

``apply_status_change`` is the only code path that writes ``jobs.status``.
It re-reads the job inside the caller's transaction (or its own), checks
the transition table, writes status plus status-linked fields, and appends
exactly one audit row. Any failure rolls the whole unit back.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from homeflow.errors import ConflictError, InvalidTransitionError, JobNotFoundError
from homeflow.jobs.models import (
    CANCELLED_STATUSES,
    DISPATCH_STATUS,
    Actor,
    Job,
    JobStateChange,
    JobStatus,
    can_transition,
)
from homeflow.logging_config import log_transition

if TYPE_CHECKING:
    from homeflow.storage.sqlite import SQLiteStore, StoreSession

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def status_linked_fields(job: Job, to_status: JobStatus, now: datetime) -> Dict[str, Any]:
    """Fields that always change together with a given transition."""
    fields: Dict[str, Any] = {}
    if job.status == DISPATCH_STATUS.value and to_status != DISPATCH_STATUS:
        fields["offered_to_id"] = None
        fields["offered_at"] = None

    if to_status == JobStatus.ASSIGNED:
        fields["accepted_at"] = now
    elif to_status == JobStatus.IN_PROGRESS and job.timer_started_at is None:
        fields["timer_started_at"] = now
    elif to_status == JobStatus.COMPLETED:
        fields["completed_at"] = now
        fields["timer_stopped_at"] = now
        if job.timer_paused_at is not None:
            paused = int((now - job.timer_paused_at).total_seconds())
            fields["timer_paused_seconds"] = job.timer_paused_seconds + max(0, paused)
            fields["timer_paused_at"] = None
            fields["timer_paused_for_parts"] = False
    elif to_status == JobStatus.CAPTURED:
        fields["captured_at"] = now
    elif to_status == JobStatus.PAID_OUT:
        fields["paid_out_at"] = now
    elif to_status == JobStatus.CLOSED:
        fields["closed_at"] = now
    elif to_status in CANCELLED_STATUSES:
        fields["cancelled_at"] = now
    return fields


class JobStateMachine:
    """Validates, applies and audit-logs job status changes."""

    def __init__(self, store: "SQLiteStore", clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def apply_status_change(
        self,
        job_id: str,
        to_status: JobStatus,
        actor: Actor,
        reason: Optional[str] = None,
        updates: Optional[Dict[str, Any]] = None,
        expect: Optional[Dict[str, Any]] = None,
        session: Optional["StoreSession"] = None,
    ) -> Job:
        """Move a job to ``to_status``.

        Args:
            job_id: Job to change
            to_status: Target status
            actor: Who is making the change (recorded in the audit row)
            reason: Free-text reason for the audit row
            updates: Extra job columns written in the same update
            expect: Extra column conditions; zero affected rows raises ConflictError
            session: Open transaction to join; a new one is opened otherwise

        Returns:
            The job as persisted after the change

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidTransitionError: If the move is not in the transition table
            ConflictError: If an ``expect`` condition no longer holds
        """
        if session is None:
            with self.store.transaction() as own_session:
                return self._apply(own_session, job_id, to_status, actor, reason, updates, expect)
        return self._apply(session, job_id, to_status, actor, reason, updates, expect)

    def _apply(
        self,
        session: "StoreSession",
        job_id: str,
        to_status: JobStatus,
        actor: Actor,
        reason: Optional[str],
        updates: Optional[Dict[str, Any]],
        expect: Optional[Dict[str, Any]],
    ) -> Job:
        target = JobStatus(to_status)
        job = session.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        from_status = job.status
        if not can_transition(from_status, target.value):
            logger.warning(f"Rejected transition {from_status} -> {target.value} for job {job_id}")
            raise InvalidTransitionError(from_status, target.value)

        now = self.clock()
        fields = status_linked_fields(job, target, now)
        fields.update(updates or {})
        fields["status"] = target.value
        fields["status_updated_at"] = now

        conditions: Dict[str, Any] = {"status": from_status}
        conditions.update(expect or {})
        if session.update_job_fields(job_id, fields, expect=conditions) == 0:
            raise ConflictError(f"Job {job_id} changed before {target.value} could be applied")

        session.insert_state_change(
            JobStateChange(
                id=str(uuid.uuid4()),
                job_id=job_id,
                from_status=from_status,
                to_status=target.value,
                actor_role=actor.role.value,
                actor_id=actor.id,
                reason=reason,
                created_at=now,
            )
        )
        logger.info(f"Job {job_id}: {from_status} -> {target.value} by {actor.role.value}")
        log_transition(job_id, from_status, target.value, actor.role.value, actor.id)
        return session.get_job(job_id)
