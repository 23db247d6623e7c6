"""Job lifecycle subsystem for homeflow.

Models:
- Job, Visit, ScopeSummary, JobStateChange, Transaction, Review, Provider
- JobStatus and the transition table (VALID_JOB_TRANSITIONS)

Executor:
- JobStateMachine: the single writer of job status
"""

from homeflow.jobs.models import (
    ADMIN_ONLY_EXIT_STATUSES,
    CANCELLED_STATUSES,
    DISPATCH_STATUS,
    TERMINAL_STATUSES,
    VALID_JOB_TRANSITIONS,
    Actor,
    Job,
    JobStateChange,
    JobStatus,
    PartsStatus,
    Provider,
    ProviderStatus,
    ProviderType,
    Review,
    ReviewKind,
    Role,
    ScopeSummary,
    Transaction,
    TransactionStatus,
    TransactionType,
    Visit,
    VisitStatus,
    can_transition,
    next_statuses,
)
from homeflow.jobs.state_machine import JobStateMachine, utc_now
from homeflow.jobs.stuck import StuckReport, compute_stuck, find_stuck_jobs

__all__ = [
    "ADMIN_ONLY_EXIT_STATUSES",
    "CANCELLED_STATUSES",
    "DISPATCH_STATUS",
    "TERMINAL_STATUSES",
    "VALID_JOB_TRANSITIONS",
    "Actor",
    "Job",
    "JobStateChange",
    "JobStateMachine",
    "JobStatus",
    "PartsStatus",
    "Provider",
    "ProviderStatus",
    "ProviderType",
    "Review",
    "ReviewKind",
    "Role",
    "ScopeSummary",
    "StuckReport",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "Visit",
    "VisitStatus",
    "can_transition",
    "compute_stuck",
    "find_stuck_jobs",
    "next_statuses",
    "utc_now",
]
