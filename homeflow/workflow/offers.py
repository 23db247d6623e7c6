"""Provider responses to dispatch offers."""

import logging
from typing import Optional

from homeflow.errors import AuthorizationError, ConflictError
from homeflow.jobs.models import DISPATCH_STATUS, Actor, Job, JobStatus, ProviderStatus, Role
from homeflow.workflow.base import WorkflowBase
from homeflow.workflow.policy import require_role

logger = logging.getLogger(__name__)


class OffersMixin(WorkflowBase):
    """Accept and decline."""

    def accept_job(self, job_id: str, actor: Actor) -> Job:
        """Accept the offer currently held by the calling provider.

        The assignment is a conditional write on the job still dispatching
        with no provider; a concurrent accept that loses sees ConflictError.

        Raises:
            ConflictError: If the job was already taken or left dispatch
            AuthorizationError: If the offer is held by someone else
        """
        require_role(actor, Role.PROVIDER)
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            if job.status != DISPATCH_STATUS.value or job.provider_id is not None:
                logger.info(f"Provider {actor.id} lost job {job_id} (status {job.status})")
                raise ConflictError("Job is no longer available")

            provider = session.get_provider(actor.id)
            if provider is None or provider.status != ProviderStatus.ACTIVE.value:
                raise AuthorizationError("Only active providers can accept jobs")
            if job.offered_to_id != actor.id:
                raise AuthorizationError("This job is not currently offered to you")

            job = self.state_machine.apply_status_change(
                job_id,
                JobStatus.ASSIGNED,
                actor,
                reason="Provider accepted offer",
                updates={"provider_id": actor.id},
                expect={"provider_id": None, "offered_to_id": actor.id},
                session=session,
            )
        logger.info(f"Job {job_id} accepted by provider {actor.id}")
        return job

    def decline_job(
        self, job_id: str, actor: Actor, reason: Optional[str] = None
    ) -> Optional[str]:
        """Decline the offer and pass it on at once.

        The provider is never offered this job again.

        Returns:
            The provider now holding the offer, or None if nobody is eligible
        """
        require_role(actor, Role.PROVIDER)
        reason = self._validate_text(reason, "Reason", required=False, max_length=500)
        with self.store.transaction() as session:
            job = self._load_job(session, job_id)
            if job.status != DISPATCH_STATUS.value or job.provider_id is not None:
                raise ConflictError("Job is no longer available")
            if job.offered_to_id != actor.id:
                raise AuthorizationError("This job is not currently offered to you")

            declined = list(job.declined_provider_ids)
            if actor.id not in declined:
                declined.append(actor.id)
            rows = session.update_job_fields(
                job_id,
                {"declined_provider_ids": declined},
                expect={"status": DISPATCH_STATUS.value, "offered_to_id": actor.id},
            )
            if rows == 0:
                raise ConflictError("Job is no longer available")
            next_provider = self.dispatch.dispatch_job(job_id, force=True, session=session)

        logger.info(
            f"Provider {actor.id} declined job {job_id}"
            + (f" ({reason})" if reason else "")
            + f"; next offer: {next_provider or 'none'}"
        )
        return next_provider
