"""Error taxonomy for homeflow operations.

Every workflow failure raises one of these. None of them leaves partial
state behind: compound writes run inside one storage transaction, so the
unit is rolled back before the error reaches the caller.
"""


class HomeflowError(Exception):
    """Base exception for homeflow operations."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(HomeflowError):
    """Bad input. No state was changed."""

    pass


class AuthorizationError(HomeflowError):
    """Caller has the wrong role or is not a counterparty on the job."""

    pass


class InvalidTransitionError(HomeflowError):
    """Requested status is not a legal successor of the current one."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        super().__init__(reason or f"Invalid transition {from_status} -> {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class NotFoundError(HomeflowError):
    """Referenced record does not exist."""

    pass


class JobNotFoundError(NotFoundError):
    """Job not found."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class VisitNotFoundError(NotFoundError):
    """Visit not found."""

    def __init__(self, visit_id: str):
        super().__init__(f"Visit {visit_id} not found")
        self.visit_id = visit_id


class ProviderNotFoundError(NotFoundError):
    """Provider not found."""

    def __init__(self, provider_id: str):
        super().__init__(f"Provider {provider_id} not found")
        self.provider_id = provider_id


class ConflictError(HomeflowError):
    """Optimistic-concurrency loss: the conditional write affected zero rows.

    Callers treat this as "already taken", not as something to retry.
    """

    pass


class InternalError(HomeflowError):
    """Unexpected failure. The transaction was rolled back and logged."""

    pass
