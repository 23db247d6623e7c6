"""One-time scope lock of a visit.

Locking freezes the customer's answers, photos, tier and price into a
ScopeSummary. It can happen exactly once per visit. When the last live
visit on a job locks, the job moves towards dispatch.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

from homeflow.dispatch.tracker import in_dispatch_window
from homeflow.errors import ConflictError, ValidationError
from homeflow.evidence import PhotoType
from homeflow.jobs.models import (
    Actor,
    JobStatus,
    ScopeSummary,
    VisitStatus,
)
from homeflow.logging_config import log_scope_lock
from homeflow.pricing.engine import quote_visit
from homeflow.workflow.base import WorkflowBase
from homeflow.workflow.policy import require_customer_owner, require_status

logger = logging.getLogger(__name__)

LOCKABLE_JOB_STATUSES = (JobStatus.PRICED, JobStatus.BOOKED)
MAX_ANSWERS = 50


@dataclass(frozen=True)
class ScopeLockResult:
    visit_id: str
    job_id: str
    tier: str
    price: Decimal
    effective_minutes: int
    total_price: Decimal
    job_status: str
    all_visits_locked: bool
    offered_to_id: Optional[str] = None


def _clean_answers(answers: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    answers = dict(answers or {})
    if len(answers) > MAX_ANSWERS:
        raise ValidationError(f"Too many answers (max {MAX_ANSWERS})")
    for key, value in answers.items():
        if not isinstance(key, str) or not key:
            raise ValidationError("Answer keys must be non-empty strings")
        if value is not None and not isinstance(value, (str, int, float, bool)):
            raise ValidationError(f"Answer '{key}' must be a simple value")
    return answers


class ScopeLockMixin(WorkflowBase):
    """Scope-lock operation."""

    def lock_visit_scope(
        self,
        visit_id: str,
        actor: Actor,
        answers: Optional[Dict[str, Any]] = None,
        photos: Optional[Sequence[bytes]] = None,
    ) -> ScopeLockResult:
        """Finalize a visit's scope and price.

        Args:
            visit_id: Visit to lock
            actor: The job's customer (or an admin)
            answers: Clarifier answers keyed by clarifier id
            photos: Scope photos

        Returns:
            ScopeLockResult with the visit's tier/price and the job's new
            total and status

        Raises:
            VisitNotFoundError: If the visit does not exist
            AuthorizationError: If the caller does not own the job
            ConflictError: If the visit is already locked
            InvalidTransitionError: If the job is not awaiting scope lock
        """
        answers = _clean_answers(answers)

        # Check before uploading so a refused lock leaves no evidence behind
        with self.store.reader() as reader:
            visit = self._load_visit(reader, visit_id)
            job = self._load_job(reader, visit.job_id)
        require_customer_owner(job, actor)
        if visit.is_locked:
            raise ConflictError(f"Visit {visit_id} scope is already locked")
        photo_keys = self._store_photos(job.id, visit_id, PhotoType.SCOPE, photos)

        offer_needed = False
        with self._photos_discarded_on_error(photo_keys), self.store.transaction() as session:
            visit = self._load_visit(session, visit_id)
            job = self._load_job(session, visit.job_id)
            require_customer_owner(job, actor)
            if visit.is_locked:
                raise ConflictError(f"Visit {visit_id} scope is already locked")
            require_status(job, LOCKABLE_JOB_STATUSES, "lock scope")

            quote = quote_visit(
                visit.capability_tag,
                visit.item_ids,
                visit.pricing_ladder,
                answers,
                self.catalogue,
            )
            now = self.clock()
            rows = session.update_visit_fields(
                visit_id,
                {
                    "status": VisitStatus.SCHEDULED.value,
                    "base_minutes": quote.base_minutes,
                    "effective_minutes": quote.effective_minutes,
                    "tier": quote.tier,
                    "price": quote.price,
                    "locked_at": now,
                },
                expect={"status": VisitStatus.DRAFT.value},
            )
            if rows == 0:
                raise ConflictError(f"Visit {visit_id} scope is already locked")
            session.insert_scope_summary(
                ScopeSummary(
                    visit_id=visit_id,
                    job_id=job.id,
                    tier=quote.tier,
                    price=quote.price,
                    effective_minutes=quote.effective_minutes,
                    answers=answers,
                    photo_keys=photo_keys,
                    created_at=now,
                )
            )
            total = self._recompute_job_price(session, job.id)

            live = [v for v in session.list_visits(job.id) if not v.is_cancelled]
            all_locked = all(v.is_locked for v in live)
            if all_locked:
                if job.status == JobStatus.PRICED.value:
                    self.state_machine.apply_status_change(
                        job.id,
                        JobStatus.BOOKED,
                        actor,
                        reason="Booked on final scope lock",
                        session=session,
                    )
                offer_needed = in_dispatch_window(job, now, self.config.activation_lead_minutes)
                job = self.state_machine.apply_status_change(
                    job.id,
                    JobStatus.ASSIGNING if offer_needed else JobStatus.WAITING_FOR_DISPATCH,
                    actor,
                    reason="All visits scope-locked and confirmed",
                    updates={"price_locked_at": now},
                    session=session,
                )

        logger.info(
            f"Locked visit {visit_id} at {quote.tier}/{quote.price} "
            f"({quote.effective_minutes} min, handling={quote.applied_handling.value})"
        )
        log_scope_lock(job.id, visit_id, quote.tier, str(quote.price), quote.effective_minutes)

        offered_to_id = None
        if offer_needed:
            try:
                offered_to_id = self.dispatch.dispatch_job(job.id)
            except ConflictError as e:
                logger.info(f"First offer for job {job.id} skipped: {e.reason}")
        return ScopeLockResult(
            visit_id=visit_id,
            job_id=job.id,
            tier=quote.tier,
            price=quote.price,
            effective_minutes=quote.effective_minutes,
            total_price=total,
            job_status=job.status,
            all_visits_locked=all_locked,
            offered_to_id=offered_to_id,
        )
