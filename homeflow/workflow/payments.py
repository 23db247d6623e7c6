"""Simulated payment steps: pre-authorisation, capture and payout.

No real payment provider is called. References are generated locally and
the ledger records what would have moved.
"""

import logging
import secrets

from homeflow.errors import ValidationError
from homeflow.jobs.models import (
    Actor,
    Job,
    JobStatus,
    PartsStatus,
    TransactionStatus,
    TransactionType,
)
from homeflow.workflow.base import WorkflowBase, money
from homeflow.workflow.policy import require_admin, require_customer_owner, require_status

logger = logging.getLogger(__name__)


def _reference(prefix: str) -> str:
    return f"{prefix}-{secrets.token_hex(4).upper()}"


class PaymentsMixin(WorkflowBase):
    """Pre-authorise, capture and pay out."""

    def preauthorise(self, job_id: str, actor: Actor) -> Job:
        """Hold the job price on the customer's card once a provider accepted."""
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            require_customer_owner(job, actor)
            job = self.state_machine.apply_status_change(
                job_id,
                JobStatus.PREAUTHORISED,
                actor,
                reason="Payment pre-authorised",
                updates={"preauth_reference": _reference("PRE")},
                session=session,
            )
        logger.info(f"Pre-authorised {job.fixed_price} for job {job_id}")
        return job

    def capture_payment(self, job_id: str, actor: Actor) -> Job:
        """Take payment for a completed job and queue the provider's payout.

        The customer is charged price plus approved parts. The platform
        keeps its fee from the labour price only.
        """
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            if actor.is_admin:
                require_status(job, [JobStatus.COMPLETED, JobStatus.RESOLUTION_PENDING], "capture")
            else:
                require_customer_owner(job, actor, allow_admin=False)
                require_status(job, [JobStatus.COMPLETED], "capture")
            if job.provider_id is None:
                raise ValidationError("Cannot capture a job without an assigned provider")
            visits = session.list_visits(job_id)
            if any(v.parts_status == PartsStatus.PENDING.value for v in visits):
                raise ValidationError("Cannot capture while a parts request is pending")

            price = money(job.fixed_price)
            parts = money(job.parts_cost)
            fee = money(price * self.config.platform_fee_percent)
            job = self.state_machine.apply_status_change(
                job_id,
                JobStatus.CAPTURED,
                actor,
                reason="Payment captured",
                updates={"payment_reference": _reference("CAP")},
                session=session,
            )
            self._record_transaction(
                session,
                job_id,
                TransactionType.CHARGE,
                price + parts,
                job.customer_id,
                status=TransactionStatus.COMPLETED,
                description="Job payment",
            )
            self._record_transaction(
                session,
                job_id,
                TransactionType.FEE,
                fee,
                None,
                status=TransactionStatus.COMPLETED,
                description="Platform fee",
            )
            self._record_transaction(
                session,
                job_id,
                TransactionType.PAYOUT,
                price - fee + parts,
                job.provider_id,
                description="Provider payout",
            )
        logger.info(f"Captured {price + parts} for job {job_id} ({job.payment_reference})")
        return job

    def payout(self, job_id: str, actor: Actor) -> Job:
        """Release the provider's pending payouts. Refused while frozen by a dispute."""
        require_admin(actor)
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            if job.payout_frozen:
                raise ValidationError("Payout is frozen while an issue is open")
            job = self.state_machine.apply_status_change(
                job_id, JobStatus.PAID_OUT, actor, reason="Provider paid out", session=session
            )
            released = session.complete_transactions(job_id, TransactionType.PAYOUT.value)
        logger.info(f"Paid out job {job_id}: {released} transaction(s) completed")
        return job
