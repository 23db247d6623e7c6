"""Mid-job interruptions: parts, scope mismatch, flags and issues.

Each branch pauses the main lifecycle and later rejoins it (or ends the
job) through an explicit customer or admin decision.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from homeflow.errors import AuthorizationError, ConflictError, ValidationError
from homeflow.evidence import PhotoType
from homeflow.jobs.models import (
    Actor,
    Job,
    JobStatus,
    PartsStatus,
    Role,
    Visit,
    VisitStatus,
    pause_timer_fields,
    resume_timer_fields,
)
from homeflow.pricing.engine import build_visits, upgrade_quote
from homeflow.workflow.base import WorkflowBase, money
from homeflow.workflow.policy import (
    require_assigned_provider,
    require_customer_owner,
    require_status,
)

logger = logging.getLogger(__name__)

MAX_PARTS_ITEMS = 20
MAX_EXTRA_MINUTES = 480


class PartsDecision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class MismatchDecision(str, Enum):
    UPGRADE = "UPGRADE"
    REBOOK = "REBOOK"


class FlagReason(str, Enum):
    SAFETY_ISSUE = "safety_issue"
    WRONG_CAPABILITY = "wrong_capability"
    SCOPE_TOO_LARGE = "scope_too_large"
    PHOTO_MISMATCH = "photo_mismatch"


# Follow-up the platform records for admins when a flag is raised
FLAG_SYSTEM_ACTIONS = {
    FlagReason.SAFETY_ISSUE: "FORCE_REBOOK_REQUIRED",
    FlagReason.WRONG_CAPABILITY: "REROUTE_OR_SPLIT_REQUIRED",
    FlagReason.SCOPE_TOO_LARGE: "RECALCULATE_TIER_REQUIRED",
    FlagReason.PHOTO_MISMATCH: "CLARIFICATION_REQUIRED",
}

CLEARED_FLAG_FIELDS: Dict[str, Any] = {
    "flag_reason": None,
    "flag_note": None,
    "flag_system_action": None,
    "flagged_by_id": None,
    "flagged_at": None,
    "flag_evidence": [],
}

FLAGGABLE_STATUSES = (
    JobStatus.ASSIGNING,
    JobStatus.ASSIGNED,
    JobStatus.PREAUTHORISED,
    JobStatus.ARRIVING,
    JobStatus.ON_SITE,
    JobStatus.IN_PROGRESS,
)


@dataclass(frozen=True)
class MismatchResolution:
    visit_id: str
    decision: str
    job_status: str
    total_price: Decimal
    tier: Optional[str] = None
    price: Optional[Decimal] = None
    effective_minutes: Optional[int] = None
    replacement_visit_id: Optional[str] = None


def _parse_parts(items: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not items:
        raise ValidationError("Parts breakdown must list at least one item")
    if len(items) > MAX_PARTS_ITEMS:
        raise ValidationError(f"Parts breakdown is limited to {MAX_PARTS_ITEMS} items")
    parsed = []
    for raw in items:
        name = str(raw.get("name") or "").strip()
        if not name:
            raise ValidationError("Every part needs a name")
        try:
            cost = money(Decimal(str(raw.get("cost"))))
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(f"Part '{name}' has an invalid cost") from None
        if cost < 0:
            raise ValidationError(f"Part '{name}' cannot have a negative cost")
        parsed.append({"name": name, "cost": str(cost)})
    return parsed


class InterruptionsMixin(WorkflowBase):
    """Parts, mismatch, flag and issue flows."""

    # =========================================================================
    # PARTS
    # =========================================================================

    def request_parts(
        self,
        visit_id: str,
        actor: Actor,
        items: Sequence[Dict[str, Any]],
        notes: Optional[str] = None,
        photos: Optional[Sequence[bytes]] = None,
    ) -> Visit:
        """Provider asks the customer to approve parts. Pauses the work timer."""
        breakdown = _parse_parts(items)
        notes = self._validate_text(notes, "Notes", required=False)

        with self.store.reader() as reader:
            visit = self._load_visit(reader, visit_id)
            job = self._load_job(reader, visit.job_id)
        require_assigned_provider(job, actor)
        require_status(job, [JobStatus.IN_PROGRESS], "request parts")
        photo_keys = self._store_photos(job.id, visit_id, PhotoType.PARTS, photos)

        with self._photos_discarded_on_error(photo_keys), self.store.transaction() as session:
            visit = self._load_visit(session, visit_id)
            job = self._load_job(session, visit.job_id)
            require_assigned_provider(job, actor)
            require_status(job, [JobStatus.IN_PROGRESS], "request parts")
            if visit.parts_status == PartsStatus.PENDING.value:
                raise ConflictError("A parts request is already pending for this visit")

            now = self.clock()
            session.update_visit_fields(
                visit_id,
                {
                    "parts_status": PartsStatus.PENDING.value,
                    "parts_breakdown": breakdown,
                    "parts_notes": notes,
                    "parts_evidence": photo_keys,
                    "parts_requested_at": now,
                    "parts_decided_at": None,
                },
            )
            self.state_machine.apply_status_change(
                job.id,
                JobStatus.PARTS_REQUIRED,
                actor,
                reason="Parts requested",
                updates=pause_timer_fields(job, now, for_parts=True),
                session=session,
            )
            visit = session.get_visit(visit_id)
        logger.info(f"Parts requested on visit {visit_id}: {len(breakdown)} item(s)")
        return visit

    def decide_parts(
        self, visit_id: str, actor: Actor, decision: str, note: Optional[str] = None
    ) -> Visit:
        """Customer approves or rejects a pending parts request.

        APPROVE resumes the timer; the provider still resumes work
        explicitly. REJECT keeps the timer paused and escalates the visit.
        """
        try:
            decision = PartsDecision(str(decision).upper())
        except ValueError:
            raise ValidationError("Decision must be APPROVE or REJECT") from None
        note = self._validate_text(note, "Note", required=False)

        with self.store.transaction() as session:
            visit = self._load_visit(session, visit_id)
            job = self._load_job(session, visit.job_id)
            require_customer_owner(job, actor)
            require_status(job, [JobStatus.PARTS_REQUIRED], "decide parts")
            if visit.parts_status != PartsStatus.PENDING.value:
                raise ValidationError("No pending parts request on this visit")

            now = self.clock()
            if decision == PartsDecision.APPROVE:
                session.update_visit_fields(
                    visit_id,
                    {"parts_status": PartsStatus.APPROVED.value, "parts_decided_at": now},
                )
                updates = resume_timer_fields(job, now)
                updates["parts_cost"] = job.parts_cost + visit.parts_total
                session.update_job_fields(job.id, updates)
            else:
                session.update_visit_fields(
                    visit_id,
                    {
                        "parts_status": PartsStatus.REJECTED.value,
                        "parts_decided_at": now,
                        "status": VisitStatus.ISSUE_PENDING.value,
                    },
                )
                self.state_machine.apply_status_change(
                    job.id,
                    JobStatus.ISSUE_REPORTED,
                    actor,
                    reason=note or "Customer rejected parts request",
                    session=session,
                )
            visit = session.get_visit(visit_id)
        logger.info(f"Parts on visit {visit_id} {decision.value.lower()}d")
        return visit

    def resume_work(self, visit_id: str, actor: Actor) -> Job:
        """Provider resumes after approved parts."""
        with self.store.transaction() as session:
            visit = self._load_visit(session, visit_id)
            job = self._load_job(session, visit.job_id)
            require_assigned_provider(job, actor)
            if visit.parts_status != PartsStatus.APPROVED.value:
                raise ValidationError("Parts have not been approved for this visit")
            require_status(job, [JobStatus.PARTS_REQUIRED], "resume work")
            return self.state_machine.apply_status_change(
                job.id,
                JobStatus.IN_PROGRESS,
                actor,
                reason="Work resumed after parts approval",
                updates=resume_timer_fields(job, self.clock()),
                session=session,
            )

    # =========================================================================
    # SCOPE MISMATCH
    # =========================================================================

    def report_mismatch(
        self,
        visit_id: str,
        actor: Actor,
        reason: str,
        extra_minutes: int,
        notes: Optional[str] = None,
        photos: Optional[Sequence[bytes]] = None,
    ) -> Job:
        """Provider reports that the work on site differs from the locked scope.

        The job is held in MISMATCH_PENDING until the customer (or an admin)
        chooses UPGRADE or REBOOK.
        """
        reason = self._validate_text(reason, "Reason", max_length=500)
        notes = self._validate_text(notes, "Notes", required=False)
        if not isinstance(extra_minutes, int) or not 0 < extra_minutes <= MAX_EXTRA_MINUTES:
            raise ValidationError(f"extra_minutes must be between 1 and {MAX_EXTRA_MINUTES}")

        mismatch_statuses = [JobStatus.ON_SITE, JobStatus.IN_PROGRESS]
        with self.store.reader() as reader:
            visit = self._load_visit(reader, visit_id)
            job = self._load_job(reader, visit.job_id)
        require_assigned_provider(job, actor)
        require_status(job, mismatch_statuses, "report a mismatch")
        photo_keys = self._store_photos(job.id, visit_id, PhotoType.MISMATCH, photos)

        with self._photos_discarded_on_error(photo_keys), self.store.transaction() as session:
            visit = self._load_visit(session, visit_id)
            job = self._load_job(session, visit.job_id)
            require_assigned_provider(job, actor)
            require_status(job, mismatch_statuses, "report a mismatch")
            if visit.status != VisitStatus.SCHEDULED.value:
                raise ValidationError(f"Visit is {visit.status}; only scheduled visits can mismatch")

            now = self.clock()
            session.update_visit_fields(
                visit_id,
                {
                    "status": VisitStatus.MISMATCH.value,
                    "mismatch_reason": reason,
                    "mismatch_notes": notes,
                    "mismatch_extra_minutes": extra_minutes,
                    "mismatch_evidence": photo_keys,
                    "mismatch_reported_at": now,
                },
            )
            self.state_machine.apply_status_change(
                job.id,
                JobStatus.SCOPE_MISMATCH,
                actor,
                reason=reason,
                updates=pause_timer_fields(job, now) if job.timer_started_at else None,
                session=session,
            )
            job = self.state_machine.apply_status_change(
                job.id,
                JobStatus.MISMATCH_PENDING,
                actor,
                reason="Awaiting customer decision",
                session=session,
            )
        logger.info(f"Mismatch reported on visit {visit_id}: {reason} (+{extra_minutes} min)")
        return job

    def resolve_mismatch(self, visit_id: str, actor: Actor, decision: str) -> MismatchResolution:
        """Customer (or admin) chooses UPGRADE or REBOOK for a mismatched visit.

        UPGRADE re-prices the visit on its ladder at the bumped duration and
        resumes work. REBOOK cancels the visit, replaces it with a fresh
        draft and releases the provider; the job then needs booking again.
        The visit's ScopeSummary is never rewritten.
        """
        try:
            decision = MismatchDecision(str(decision).upper())
        except ValueError:
            raise ValidationError("Decision must be UPGRADE or REBOOK") from None

        with self.store.transaction() as session:
            visit = self._load_visit(session, visit_id)
            job = self._load_job(session, visit.job_id)
            require_customer_owner(job, actor)
            require_status(job, [JobStatus.MISMATCH_PENDING], "resolve a mismatch")
            if visit.status != VisitStatus.MISMATCH.value:
                raise ValidationError("This visit has no open mismatch")

            now = self.clock()
            if decision == MismatchDecision.UPGRADE:
                bumped, priced = upgrade_quote(
                    visit.effective_minutes,
                    visit.mismatch_extra_minutes or 0,
                    visit.tier,
                    self.catalogue.get_ladder(visit.pricing_ladder),
                )
                session.update_visit_fields(
                    visit_id,
                    {
                        "status": VisitStatus.SCHEDULED.value,
                        "effective_minutes": bumped,
                        "tier": priced.tier,
                        "price": priced.price,
                    },
                )
                total = self._recompute_job_price(session, job.id)
                job = self.state_machine.apply_status_change(
                    job.id,
                    JobStatus.IN_PROGRESS,
                    actor,
                    reason=f"Mismatch upgraded {visit.tier} -> {priced.tier}",
                    updates=resume_timer_fields(job, now),
                    session=session,
                )
                result = MismatchResolution(
                    visit_id=visit_id,
                    decision=decision.value,
                    job_status=job.status,
                    total_price=total,
                    tier=priced.tier,
                    price=priced.price,
                    effective_minutes=bumped,
                )
            else:
                session.update_visit_fields(visit_id, {"status": VisitStatus.CANCELLED.value})
                draft = build_visits(visit.item_ids, self.catalogue)[0]
                replacement = Visit(
                    id=str(uuid.uuid4()),
                    job_id=job.id,
                    capability_tag=draft.capability_tag,
                    primary_item_id=draft.primary_item_id,
                    addon_item_ids=draft.addon_item_ids,
                    pricing_ladder=draft.pricing_ladder,
                    base_minutes=draft.base_minutes,
                    effective_minutes=draft.base_minutes,
                    tier=draft.tier,
                    price=draft.price,
                    visit_type_label=draft.visit_type_label,
                    created_at=now,
                )
                session.insert_visit(replacement)
                total = self._recompute_job_price(session, job.id)
                job = self.state_machine.apply_status_change(
                    job.id,
                    JobStatus.REBOOK_REQUIRED,
                    actor,
                    reason="Mismatch resolved by rebooking",
                    updates={
                        "provider_id": None,
                        "price_locked_at": None,
                        "timer_started_at": None,
                        "timer_paused_at": None,
                        "timer_paused_for_parts": False,
                        "timer_paused_seconds": 0,
                    },
                    session=session,
                )
                result = MismatchResolution(
                    visit_id=visit_id,
                    decision=decision.value,
                    job_status=job.status,
                    total_price=total,
                    replacement_visit_id=replacement.id,
                )
        logger.info(f"Mismatch on visit {visit_id} resolved: {decision.value}")
        return result

    # =========================================================================
    # FLAGS
    # =========================================================================

    def flag_job(
        self,
        job_id: str,
        actor: Actor,
        reason: str,
        note: Optional[str] = None,
        photos: Optional[Sequence[bytes]] = None,
    ) -> Job:
        """Send a job to admin review.

        Providers may flag a job they hold or are being offered; a flagging
        provider is not offered the job again.
        """
        try:
            flag_reason = FlagReason(str(reason).lower())
        except ValueError:
            allowed = ", ".join(r.value for r in FlagReason)
            raise ValidationError(f"Flag reason must be one of: {allowed}") from None
        note = self._validate_text(note, "Note", required=False)

        with self.store.reader() as reader:
            job = self._load_job(reader, job_id)
        self._require_flagger(job, actor)
        require_status(job, FLAGGABLE_STATUSES, "flag")
        photo_keys = self._store_photos(job_id, job_id, PhotoType.FLAG, photos)

        with self._photos_discarded_on_error(photo_keys), self.store.transaction() as session:
            job = self._load_job(session, job_id)
            self._require_flagger(job, actor)
            require_status(job, FLAGGABLE_STATUSES, "flag")
            declined = list(job.declined_provider_ids)
            if actor.role == Role.PROVIDER and actor.id not in declined:
                declined.append(actor.id)
            job = self.state_machine.apply_status_change(
                job_id,
                JobStatus.FLAGGED_REVIEW,
                actor,
                reason=f"Flagged: {flag_reason.value}",
                updates={
                    "flag_reason": flag_reason.value,
                    "flag_note": note,
                    "flag_system_action": FLAG_SYSTEM_ACTIONS[flag_reason],
                    "flagged_by_id": actor.id,
                    "flagged_at": self.clock(),
                    "flag_evidence": photo_keys,
                    "declined_provider_ids": declined,
                },
                session=session,
            )
        logger.warning(f"Job {job_id} flagged by {actor.role.value} {actor.id}: {flag_reason.value}")
        return job

    def _require_flagger(self, job: Job, actor: Actor) -> None:
        if actor.is_admin:
            return
        if actor.role == Role.PROVIDER and actor.id in (job.provider_id, job.offered_to_id):
            return
        raise AuthorizationError("Only the assigned or offered provider may flag this job")

    # =========================================================================
    # ISSUES
    # =========================================================================

    def raise_issue(
        self,
        job_id: str,
        actor: Actor,
        reason_code: str,
        description: Optional[str] = None,
        photos: Optional[Sequence[bytes]] = None,
    ) -> Job:
        """Open a dispute.

        The job's customer may raise one after completion, which freezes the
        payout. The assigned provider may raise one while arriving or working,
        which freezes the work timer. Evidence photos are required.
        """
        reason_code = self._validate_text(reason_code, "Reason code", max_length=100)
        description = self._validate_text(description, "Description", required=False)

        with self.store.reader() as reader:
            job = self._load_job(reader, job_id)
        target = self._issue_target(job, actor)
        photo_keys = self._store_photos(job_id, job_id, PhotoType.ISSUE, photos, required=True)

        with self._photos_discarded_on_error(photo_keys), self.store.transaction() as session:
            job = self._load_job(session, job_id)
            target = self._issue_target(job, actor)
            now = self.clock()
            updates: Dict[str, Any] = {
                "issue_raised_by": actor.role.value,
                "issue_raised_by_id": actor.id,
                "issue_reason_code": reason_code,
                "issue_description": description,
                "issue_evidence": photo_keys,
                "issue_raised_at": now,
                "issue_resolution": None,
                "issue_resolved_at": None,
            }
            if target == JobStatus.ISSUE_RAISED_BY_CUSTOMER:
                updates["payout_frozen"] = True
            else:
                updates["timer_frozen_for_issue"] = True
                if job.timer_started_at is not None:
                    updates.update(pause_timer_fields(job, now))
            job = self.state_machine.apply_status_change(
                job_id, target, actor, reason=f"Issue: {reason_code}", updates=updates,
                session=session,
            )
        logger.warning(f"Issue raised on job {job_id} by {actor.role.value}: {reason_code}")
        return job

    def _issue_target(self, job: Job, actor: Actor) -> JobStatus:
        if actor.role == Role.CUSTOMER:
            require_customer_owner(job, actor, allow_admin=False)
            require_status(job, [JobStatus.COMPLETED], "raise an issue")
            return JobStatus.ISSUE_RAISED_BY_CUSTOMER
        if actor.role == Role.PROVIDER:
            require_assigned_provider(job, actor)
            require_status(job, [JobStatus.ARRIVING, JobStatus.IN_PROGRESS], "raise an issue")
            return JobStatus.ISSUE_RAISED_BY_PROVIDER
        raise AuthorizationError("Only the job's customer or assigned provider may raise issues")

