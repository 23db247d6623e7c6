"""Job lifecycle operations: quote, booking, progress, cancellation, closing."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from homeflow.catalogue.models import CAPABILITY_CATEGORIES
from homeflow.errors import AuthorizationError, InvalidTransitionError, ValidationError
from homeflow.jobs.models import (
    CANCELLED_STATUSES,
    TERMINAL_STATUSES,
    Actor,
    Job,
    JobStatus,
    PartsStatus,
    Review,
    ReviewKind,
    Role,
    TransactionType,
    Visit,
    VisitStatus,
)
from homeflow.pricing.engine import VisitDraft, build_visits
from homeflow.workflow.base import WorkflowBase, money
from homeflow.workflow.policy import (
    CHARGEABLE_CANCELLATION,
    CUSTOMER_CANCELLABLE,
    PROVIDER_PROGRESS,
    REVIEWABLE_STATUSES,
    require_admin,
    require_assigned_provider,
    require_customer_owner,
    require_role,
    require_status,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Quote:
    """A priced job with its draft visits."""

    job: Job
    visits: List[Visit]
    total_price: Decimal


@dataclass(frozen=True)
class QuotePreview:
    """Draft visits and total for a set of items. Nothing is stored."""

    visits: List[VisitDraft]
    total_price: Decimal


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LifecycleMixin(WorkflowBase):
    """Quote, booking, execution progress, cancellation, reviews and closing."""

    # =========================================================================
    # QUOTE AND BOOKING
    # =========================================================================

    def preview_quote(self, item_ids: List[str]) -> QuotePreview:
        """Price catalogue items the way create_job would, without creating a job.

        Prices are the unlocked draft prices; scope lock may still raise them.
        """
        drafts = build_visits(item_ids, self.catalogue)
        total = sum((d.price for d in drafts), Decimal("0"))
        logger.debug(f"Previewed {len(item_ids)} item(s) as {len(drafts)} visit(s): {total}")
        return QuotePreview(visits=drafts, total_price=total)

    def _validate_schedule(
        self, is_asap: bool, scheduled_at: Optional[datetime]
    ) -> Optional[datetime]:
        scheduled_at = _as_utc(scheduled_at)
        if is_asap:
            return scheduled_at
        if scheduled_at is None:
            raise ValidationError("scheduled_at is required unless the job is ASAP")
        if scheduled_at <= self.clock():
            raise ValidationError("scheduled_at must be in the future")
        return scheduled_at

    def create_job(
        self,
        actor: Actor,
        description: str,
        item_ids: List[str],
        location: str = "",
        is_asap: bool = False,
        scheduled_at: Optional[datetime] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> Quote:
        """Create a job from parsed item ids and quote it.

        The job is stored with one draft visit per capability group and
        moved to PRICED.

        Raises:
            AuthorizationError: If the caller is not a customer
            ValidationError: If the description, items or schedule are invalid
        """
        require_role(actor, Role.CUSTOMER)
        description = self._validate_text(description, "Description")
        location = self._validate_text(location, "Location", required=False, max_length=500) or ""
        scheduled_at = self._validate_schedule(is_asap, scheduled_at)
        if latitude is not None and not -90 <= latitude <= 90:
            raise ValidationError("Latitude out of range")
        if longitude is not None and not -180 <= longitude <= 180:
            raise ValidationError("Longitude out of range")

        drafts = build_visits(item_ids, self.catalogue)
        total = sum((d.price for d in drafts), Decimal("0"))
        now = self.clock()
        job = Job(
            id=str(uuid.uuid4()),
            customer_id=actor.id,
            description=description,
            location=location,
            category=CAPABILITY_CATEGORIES.get(drafts[0].capability_tag, drafts[0].capability_tag),
            is_asap=is_asap,
            scheduled_at=scheduled_at,
            latitude=latitude,
            longitude=longitude,
            created_at=now,
            status_updated_at=now,
        )
        visits = [
            Visit(
                id=str(uuid.uuid4()),
                job_id=job.id,
                capability_tag=d.capability_tag,
                primary_item_id=d.primary_item_id,
                addon_item_ids=d.addon_item_ids,
                pricing_ladder=d.pricing_ladder,
                base_minutes=d.base_minutes,
                effective_minutes=d.base_minutes,
                tier=d.tier,
                price=d.price,
                visit_type_label=d.visit_type_label,
                created_at=now,
            )
            for d in drafts
        ]

        with self.store.transaction() as session:
            session.insert_job(job)
            for visit in visits:
                session.insert_visit(visit)
            job = self.state_machine.apply_status_change(
                job.id,
                JobStatus.PRICED,
                actor,
                reason=f"Quoted {len(visits)} visit(s)",
                updates={"fixed_price": total},
                session=session,
            )

        logger.info(f"Created job {job.id} for customer {actor.id}: {len(visits)} visit(s), {total}")
        return Quote(job=job, visits=visits, total_price=total)

    def book_job(self, job_id: str, actor: Actor) -> Job:
        """Customer accepts the quote."""
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            require_customer_owner(job, actor)
            return self.state_machine.apply_status_change(
                job_id, JobStatus.BOOKED, actor, reason="Quote accepted", session=session
            )

    def reschedule_job(
        self,
        job_id: str,
        actor: Actor,
        is_asap: bool = False,
        scheduled_at: Optional[datetime] = None,
    ) -> Job:
        """Give a job that needs rescheduling a new slot and book it again."""
        scheduled_at = self._validate_schedule(is_asap, scheduled_at)
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            require_customer_owner(job, actor)
            require_status(job, [JobStatus.RESCHEDULE_REQUIRED], "reschedule")
            return self.state_machine.apply_status_change(
                job_id,
                JobStatus.BOOKED,
                actor,
                reason="Rescheduled",
                updates={
                    "is_asap": is_asap,
                    "scheduled_at": scheduled_at,
                    "provider_id": None,
                    "declined_provider_ids": [],
                },
                session=session,
            )

    def rebook_job(
        self,
        job_id: str,
        actor: Actor,
        is_asap: bool = False,
        scheduled_at: Optional[datetime] = None,
    ) -> Job:
        """Book a job again after a mismatch was resolved by rebooking.

        The replacement visit created at resolution time is still a draft;
        the customer locks its scope before dispatch resumes.
        """
        scheduled_at = self._validate_schedule(is_asap, scheduled_at)
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            require_customer_owner(job, actor)
            require_status(job, [JobStatus.REBOOK_REQUIRED], "rebook")
            return self.state_machine.apply_status_change(
                job_id,
                JobStatus.BOOKED,
                actor,
                reason="Rebooked after scope mismatch",
                updates={"is_asap": is_asap, "scheduled_at": scheduled_at},
                session=session,
            )

    # =========================================================================
    # EXECUTION PROGRESS
    # =========================================================================

    def change_status(
        self,
        job_id: str,
        new_status: str,
        actor: Actor,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Job:
        """Generic status change entry point.

        Provider progress steps (ARRIVING, ON_SITE, IN_PROGRESS, COMPLETED)
        are handled here; targets with their own operation are delegated to
        it. Anything else must go through its dedicated operation.
        """
        extra = dict(extra or {})
        try:
            target = JobStatus(str(new_status).upper())
        except ValueError:
            raise ValidationError(f"Unknown status: {new_status}") from None

        if target in CANCELLED_STATUSES:
            return self.cancel_job(job_id, actor, reason=extra.get("reason"))
        delegates = {
            JobStatus.BOOKED: lambda: self.book_job(job_id, actor),
            JobStatus.PREAUTHORISED: lambda: self.preauthorise(job_id, actor),
            JobStatus.CAPTURED: lambda: self.capture_payment(job_id, actor),
            JobStatus.PAID_OUT: lambda: self.payout(job_id, actor),
            JobStatus.CLOSED: lambda: self.close_job(job_id, actor, reason=extra.get("reason")),
        }
        if target in delegates:
            return delegates[target]()
        if target not in PROVIDER_PROGRESS:
            raise ValidationError(f"{target.value} must be set through its dedicated operation")

        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            require_assigned_provider(job, actor, allow_admin=True)
            require_status(job, PROVIDER_PROGRESS[target], f"move to {target.value}")

            if target == JobStatus.COMPLETED:
                visits = [v for v in session.list_visits(job_id) if not v.is_cancelled]
                if any(v.parts_status == PartsStatus.PENDING.value for v in visits):
                    raise ValidationError("Cannot complete while a parts request is pending")
                for visit in visits:
                    session.update_visit_fields(visit.id, {"status": VisitStatus.COMPLETED.value})

            return self.state_machine.apply_status_change(
                job_id,
                target,
                actor,
                reason=extra.get("reason") or f"Provider marked {target.value}",
                session=session,
            )

    # =========================================================================
    # CANCELLATION
    # =========================================================================

    def cancel_job(
        self,
        job_id: str,
        actor: Actor,
        reason: Optional[str] = None,
        waive_fee: bool = False,
    ) -> Job:
        """Cancel a job, charging a fee once a provider is committed.

        Customers may cancel their own jobs up to completion. Admins may
        cancel any non-terminal job and may waive the fee.
        """
        reason = self._validate_text(reason, "Reason", required=False, max_length=500)
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            if actor.is_admin:
                if JobStatus(job.status) in TERMINAL_STATUSES:
                    raise InvalidTransitionError(
                        job.status, "CANCELLED", reason="Cannot cancel finished job"
                    )
            else:
                require_customer_owner(job, actor, allow_admin=False)
                if JobStatus(job.status) not in CUSTOMER_CANCELLABLE:
                    raise InvalidTransitionError(
                        job.status, "CANCELLED", reason="Cannot cancel finished job"
                    )
                waive_fee = False
            job, fee = self._cancel_in_session(session, job, actor, reason, waive_fee)

        logger.info(f"Job {job_id} cancelled by {actor.role.value} (fee={fee})")
        return job

    def _cancel_in_session(
        self,
        session,
        job: Job,
        actor: Actor,
        reason: Optional[str],
        waive_fee: bool,
        updates: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Job, Optional[Decimal]]:
        """Apply a cancellation inside an open transaction.

        Open visits are cancelled and pending parts requests are rejected.
        """
        status = JobStatus(job.status)
        charged = status in CHARGEABLE_CANCELLATION and job.fixed_price > 0 and not waive_fee
        fee = money(job.fixed_price * self.config.cancellation_fee_percent) if charged else None

        fields = {
            "cancellation_reason": reason,
            "cancelled_by_role": actor.role.value,
            "cancellation_fee": fee,
        }
        fields.update(updates or {})
        job = self.state_machine.apply_status_change(
            job.id,
            JobStatus.CANCELLED_CHARGED if charged else JobStatus.CANCELLED_FREE,
            actor,
            reason=reason or "Cancelled",
            updates=fields,
            session=session,
        )
        for visit in session.list_visits(job.id):
            visit_fields = {}
            if visit.status not in (VisitStatus.CANCELLED.value, VisitStatus.COMPLETED.value):
                visit_fields["status"] = VisitStatus.CANCELLED.value
            if visit.parts_status == PartsStatus.PENDING.value:
                visit_fields["parts_status"] = PartsStatus.REJECTED.value
            if visit_fields:
                session.update_visit_fields(visit.id, visit_fields)

        if charged:
            self._record_transaction(
                session,
                job.id,
                TransactionType.CHARGE,
                fee,
                job.customer_id,
                description="Cancellation fee",
            )
            if job.provider_id:
                self._record_transaction(
                    session,
                    job.id,
                    TransactionType.PAYOUT,
                    fee * self.config.provider_cancellation_share,
                    job.provider_id,
                    description="Cancellation compensation",
                )
        return job, fee

    # =========================================================================
    # REVIEWS AND CLOSING
    # =========================================================================

    def submit_review(
        self, job_id: str, actor: Actor, rating: int, comment: Optional[str] = None
    ) -> Review:
        """Record the customer's or an admin's review. Resubmitting replaces it."""
        comment = self._validate_text(comment, "Comment", required=False)
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            if actor.is_admin:
                kind = ReviewKind.ADMIN
            else:
                require_customer_owner(job, actor, allow_admin=False)
                kind = ReviewKind.CUSTOMER
            require_status(job, REVIEWABLE_STATUSES, "review")
            try:
                review = Review(
                    job_id=job_id,
                    kind=kind,
                    reviewer_id=actor.id,
                    rating=int(rating),
                    comment=comment,
                    created_at=self.clock(),
                )
            except (TypeError, ValueError) as e:
                raise ValidationError(str(e)) from e
            session.upsert_review(review)
        logger.info(f"{kind.value} review for job {job_id}: {review.rating}/5")
        return review

    def close_job(self, job_id: str, actor: Actor, reason: Optional[str] = None) -> Job:
        """Close a job. Requires both a customer and an admin review."""
        require_admin(actor)
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            kinds = {r.kind for r in session.list_reviews(job_id)}
            missing = [k.value for k in ReviewKind if k.value not in kinds]
            if missing:
                raise ValidationError(
                    f"Closing requires a customer and an admin review (missing: {', '.join(missing)})"
                )
            return self.state_machine.apply_status_change(
                job.id, JobStatus.CLOSED, actor, reason=reason or "Closed", session=session
            )

    # =========================================================================
    # READS
    # =========================================================================

    def get_job(self, job_id: str, actor: Actor) -> Tuple[Job, List[Visit]]:
        """A job and its visits, visible to its customer, provider, offeree or admins."""
        with self.store.reader() as reader:
            job = self._load_job(reader, job_id)
            visits = reader.list_visits(job_id)
        if not actor.is_admin and actor.id not in (
            job.customer_id,
            job.provider_id,
            job.offered_to_id,
        ):
            raise AuthorizationError("You are not a party to this job")
        return job, visits

    def evidence_urls(self, job_id: str, actor: Actor) -> Dict[str, List[str]]:
        """Signed read URLs for every photo attached to a job, grouped by source."""
        job, visits = self.get_job(job_id, actor)
        if self.evidence is None:
            raise ValidationError("Photo uploads are not configured")
        ttl = self.config.evidence_url_ttl_seconds
        keys: Dict[str, List[str]] = {"scope": [], "parts": [], "mismatch": []}
        with self.store.reader() as reader:
            for visit in visits:
                summary = reader.get_scope_summary(visit.id)
                if summary is not None:
                    keys["scope"].extend(summary.photo_keys)
                keys["parts"].extend(visit.parts_evidence)
                keys["mismatch"].extend(visit.mismatch_evidence)
        keys["flag"] = list(job.flag_evidence)
        keys["issue"] = list(job.issue_evidence)
        return {
            source: [self.evidence.signed_url(key, expires_in=ttl) for key in group]
            for source, group in keys.items()
        }
