"""Sequential, time-boxed offer engine.

One provider at a time holds an exclusive offer on a job in the dispatch
status. ``dispatch_job`` is a single idempotent step: it keeps a live
offer, moves an expired one to the next eligible provider, or clears the
pointer when nobody is eligible.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from homeflow.config import HomeflowConfig
from homeflow.dispatch.matcher import EligibleProvider, find_eligible_providers
from homeflow.errors import ConflictError, JobNotFoundError
from homeflow.jobs.models import DISPATCH_STATUS, Job
from homeflow.jobs.state_machine import utc_now
from homeflow.logging_config import log_offer
from homeflow.storage.sqlite import SQLiteStore, StoreSession

logger = logging.getLogger(__name__)


class DispatchEngine:
    """Finds eligible providers and advances the offer pointer."""

    def __init__(
        self,
        store: SQLiteStore,
        config: Optional[HomeflowConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.config = config or HomeflowConfig()
        self.clock = clock

    @property
    def offer_timeout(self) -> timedelta:
        return timedelta(seconds=self.config.offer_timeout_seconds)

    def offer_is_live(self, job: Job, now: datetime) -> bool:
        if job.offered_to_id is None or job.offered_at is None:
            return False
        return now - job.offered_at < self.offer_timeout

    def find_eligible_providers(
        self, job_id: str, session: Optional[StoreSession] = None
    ) -> List[EligibleProvider]:
        if session is None:
            with self.store.reader() as reader:
                return self._eligible(reader, job_id)
        return self._eligible(session, job_id)

    def _eligible(self, session: StoreSession, job_id: str) -> List[EligibleProvider]:
        job = session.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return find_eligible_providers(
            job, session.list_visits(job_id), session.list_providers(available_only=True)
        )

    def dispatch_job(
        self, job_id: str, force: bool = False, session: Optional[StoreSession] = None
    ) -> Optional[str]:
        """Advance the job's offer by at most one step.

        Args:
            job_id: Job to dispatch
            force: Advance even if the current offer is still live
            session: Open transaction to join

        Returns:
            The provider currently holding the offer, or None when the job is
            not dispatching or nobody is eligible

        Raises:
            JobNotFoundError: If the job does not exist
            ConflictError: If the job left the dispatch status before the
                offer could be written
        """
        if session is None:
            with self.store.transaction() as own_session:
                return self._dispatch(own_session, job_id, force)
        return self._dispatch(session, job_id, force)

    def _dispatch(self, session: StoreSession, job_id: str, force: bool) -> Optional[str]:
        job = session.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != DISPATCH_STATUS.value:
            logger.debug(f"Job {job_id} is {job.status}, not dispatching")
            return None

        now = self.clock()
        if not force and self.offer_is_live(job, now):
            return job.offered_to_id

        eligible = [
            c.provider_id
            for c in find_eligible_providers(
                job, session.list_visits(job_id), session.list_providers(available_only=True)
            )
        ]
        # Only condition on the dispatch status; a concurrent cancel or accept wins
        expect = {"status": DISPATCH_STATUS.value, "provider_id": None}

        if not eligible:
            if job.offered_to_id is not None or job.offered_at is not None:
                session.update_job_fields(
                    job_id, {"offered_to_id": None, "offered_at": None}, expect=expect
                )
                log_offer(job_id, None, "no eligible providers")
            logger.warning(f"No eligible providers for job {job_id}; leaving for next sweep")
            return None

        if job.offered_to_id in eligible:
            index = (eligible.index(job.offered_to_id) + 1) % len(eligible)
        else:
            index = 0
        next_provider = eligible[index]

        rows = session.update_job_fields(
            job_id, {"offered_to_id": next_provider, "offered_at": now}, expect=expect
        )
        if rows == 0:
            raise ConflictError(f"Job {job_id} is no longer dispatching")

        reason = "forced" if force else ("expired" if job.offered_to_id else "started")
        logger.info(f"Offered job {job_id} to provider {next_provider} ({reason})")
        log_offer(job_id, next_provider, reason)
        return next_provider
