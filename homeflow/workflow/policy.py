"""Role and precondition guards for workflow operations.

The transition table only says whether a move is structurally legal. These
guards say whether this caller may make it right now. Guards never write;
they raise and leave state untouched.
"""

from typing import Iterable

from homeflow.errors import AuthorizationError, InvalidTransitionError
from homeflow.jobs.models import Actor, Job, JobStatus, Role

# Provider-driven progress steps accepted by change-status, with the
# statuses each may start from
PROVIDER_PROGRESS = {
    JobStatus.ARRIVING: frozenset({JobStatus.ASSIGNED, JobStatus.PREAUTHORISED}),
    JobStatus.ON_SITE: frozenset({JobStatus.ARRIVING}),
    JobStatus.IN_PROGRESS: frozenset({JobStatus.ON_SITE}),
    JobStatus.COMPLETED: frozenset({JobStatus.IN_PROGRESS}),
}

# Statuses from which a customer may still cancel
CUSTOMER_CANCELLABLE = frozenset(
    {
        JobStatus.REQUESTED,
        JobStatus.PRICED,
        JobStatus.BOOKED,
        JobStatus.WAITING_FOR_DISPATCH,
        JobStatus.ASSIGNING,
        JobStatus.ASSIGNED,
        JobStatus.PREAUTHORISED,
        JobStatus.ARRIVING,
        JobStatus.ON_SITE,
        JobStatus.IN_PROGRESS,
        JobStatus.PARTS_REQUIRED,
        JobStatus.SCOPE_MISMATCH,
        JobStatus.MISMATCH_PENDING,
        JobStatus.REBOOK_REQUIRED,
        JobStatus.RESCHEDULE_REQUIRED,
    }
)

# Once a provider is committed, cancelling costs the customer a fee
CHARGEABLE_CANCELLATION = frozenset(
    {
        JobStatus.ASSIGNED,
        JobStatus.PREAUTHORISED,
        JobStatus.ARRIVING,
        JobStatus.ON_SITE,
        JobStatus.IN_PROGRESS,
        JobStatus.PARTS_REQUIRED,
        JobStatus.SCOPE_MISMATCH,
        JobStatus.MISMATCH_PENDING,
    }
)

REVIEWABLE_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.CAPTURED, JobStatus.PAID_OUT, JobStatus.RESOLUTION_PENDING}
)


def require_role(actor: Actor, *roles: Role) -> None:
    if actor.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        raise AuthorizationError(f"Only {allowed} may perform this action")


def require_admin(actor: Actor) -> None:
    require_role(actor, Role.ADMIN)


def require_customer_owner(job: Job, actor: Actor, allow_admin: bool = True) -> None:
    """Caller must be the job's customer (or an admin, if allowed)."""
    if allow_admin and actor.is_admin:
        return
    if actor.role != Role.CUSTOMER or actor.id != job.customer_id:
        raise AuthorizationError("Only the job's customer may perform this action")


def require_assigned_provider(job: Job, actor: Actor, allow_admin: bool = False) -> None:
    """Caller must be the provider assigned to the job."""
    if allow_admin and actor.is_admin:
        return
    if actor.role != Role.PROVIDER or job.provider_id is None or actor.id != job.provider_id:
        raise AuthorizationError("Only the assigned provider may perform this action")


def require_status(job: Job, statuses: Iterable[JobStatus], action: str) -> None:
    """Job must currently be in one of ``statuses``."""
    allowed = {JobStatus(s).value for s in statuses}
    if job.status not in allowed:
        raise InvalidTransitionError(
            job.status, action, reason=f"Cannot {action} while job is {job.status}"
        )
