"""Job lifecycle data models.

Models:
- Job: the aggregate root; status only changes through the state machine
- Visit: a capability-homogeneous bundle of items priced and dispatched as one
- ScopeSummary: immutable contract snapshot written once at scope lock
- JobStateChange: append-only audit row, one per transition
- Transaction: ledger entry (charge, payout, fee)
- Review: customer or admin review, one of each per job
- Provider: a tradesperson in the dispatch pool
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

# =============================================================================
# Actors
# =============================================================================


class Role(str, Enum):
    """Caller role, resolved outside homeflow."""

    CUSTOMER = "CUSTOMER"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


@dataclass(frozen=True)
class Actor:
    """Identity and role of whoever invokes an operation."""

    role: Role
    id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.role, Role):
            try:
                object.__setattr__(self, "role", Role(str(self.role).upper()))
            except ValueError:
                raise ValueError(f"Invalid role: {self.role}") from None
        if self.role != Role.SYSTEM and not self.id:
            raise ValueError(f"{self.role.value} actor requires an id")

    @classmethod
    def system(cls) -> "Actor":
        return cls(role=Role.SYSTEM, id="system")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


# =============================================================================
# Job status and transitions
# =============================================================================


class JobStatus(str, Enum):
    """Job lifecycle status."""

    REQUESTED = "REQUESTED"
    PRICED = "PRICED"
    BOOKED = "BOOKED"
    WAITING_FOR_DISPATCH = "WAITING_FOR_DISPATCH"
    ASSIGNING = "ASSIGNING"
    ASSIGNED = "ASSIGNED"
    PREAUTHORISED = "PREAUTHORISED"
    ARRIVING = "ARRIVING"
    ON_SITE = "ON_SITE"
    IN_PROGRESS = "IN_PROGRESS"
    SCOPE_MISMATCH = "SCOPE_MISMATCH"
    MISMATCH_PENDING = "MISMATCH_PENDING"
    REBOOK_REQUIRED = "REBOOK_REQUIRED"
    PARTS_REQUIRED = "PARTS_REQUIRED"
    COMPLETED = "COMPLETED"
    ISSUE_REPORTED = "ISSUE_REPORTED"
    ISSUE_RAISED_BY_CUSTOMER = "ISSUE_RAISED_BY_CUSTOMER"
    ISSUE_RAISED_BY_PROVIDER = "ISSUE_RAISED_BY_PROVIDER"
    RESOLUTION_PENDING = "RESOLUTION_PENDING"
    CAPTURED = "CAPTURED"
    PAID_OUT = "PAID_OUT"
    CLOSED = "CLOSED"
    CANCELLED_FREE = "CANCELLED_FREE"
    CANCELLED_CHARGED = "CANCELLED_CHARGED"
    RESCHEDULE_REQUIRED = "RESCHEDULE_REQUIRED"
    FLAGGED_REVIEW = "FLAGGED_REVIEW"


TERMINAL_STATUSES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.CLOSED, JobStatus.CANCELLED_FREE, JobStatus.CANCELLED_CHARGED}
)

CANCELLED_STATUSES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.CANCELLED_FREE, JobStatus.CANCELLED_CHARGED}
)

# Status in which a job accepts provider offers
DISPATCH_STATUS = JobStatus.ASSIGNING

# Statuses with no machine-driven exit; only an administrator moves them on
ADMIN_ONLY_EXIT_STATUSES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.RESOLUTION_PENDING, JobStatus.FLAGGED_REVIEW}
)

# Forward edges of the lifecycle. Cancellation edges are added below for
# every non-terminal status.
_FORWARD_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.REQUESTED: frozenset({JobStatus.PRICED}),
    JobStatus.PRICED: frozenset({JobStatus.BOOKED}),
    JobStatus.BOOKED: frozenset({JobStatus.WAITING_FOR_DISPATCH, JobStatus.ASSIGNING}),
    JobStatus.WAITING_FOR_DISPATCH: frozenset({JobStatus.ASSIGNING}),
    JobStatus.ASSIGNING: frozenset(
        {JobStatus.ASSIGNED, JobStatus.RESCHEDULE_REQUIRED, JobStatus.FLAGGED_REVIEW}
    ),
    JobStatus.ASSIGNED: frozenset(
        {
            JobStatus.PREAUTHORISED,
            JobStatus.ARRIVING,
            JobStatus.ASSIGNING,
            JobStatus.FLAGGED_REVIEW,
        }
    ),
    JobStatus.PREAUTHORISED: frozenset(
        {JobStatus.ARRIVING, JobStatus.ASSIGNING, JobStatus.FLAGGED_REVIEW}
    ),
    JobStatus.ARRIVING: frozenset(
        {JobStatus.ON_SITE, JobStatus.ISSUE_RAISED_BY_PROVIDER, JobStatus.FLAGGED_REVIEW}
    ),
    JobStatus.ON_SITE: frozenset(
        {JobStatus.IN_PROGRESS, JobStatus.SCOPE_MISMATCH, JobStatus.FLAGGED_REVIEW}
    ),
    JobStatus.IN_PROGRESS: frozenset(
        {
            JobStatus.COMPLETED,
            JobStatus.PARTS_REQUIRED,
            JobStatus.SCOPE_MISMATCH,
            JobStatus.ISSUE_RAISED_BY_PROVIDER,
            JobStatus.FLAGGED_REVIEW,
        }
    ),
    JobStatus.SCOPE_MISMATCH: frozenset({JobStatus.MISMATCH_PENDING}),
    JobStatus.MISMATCH_PENDING: frozenset({JobStatus.IN_PROGRESS, JobStatus.REBOOK_REQUIRED}),
    JobStatus.REBOOK_REQUIRED: frozenset({JobStatus.BOOKED}),
    JobStatus.PARTS_REQUIRED: frozenset({JobStatus.IN_PROGRESS, JobStatus.ISSUE_REPORTED}),
    JobStatus.COMPLETED: frozenset({JobStatus.CAPTURED, JobStatus.ISSUE_RAISED_BY_CUSTOMER}),
    JobStatus.ISSUE_REPORTED: frozenset({JobStatus.RESOLUTION_PENDING}),
    JobStatus.ISSUE_RAISED_BY_CUSTOMER: frozenset({JobStatus.RESOLUTION_PENDING}),
    JobStatus.ISSUE_RAISED_BY_PROVIDER: frozenset({JobStatus.RESOLUTION_PENDING}),
    JobStatus.RESOLUTION_PENDING: frozenset(
        {JobStatus.IN_PROGRESS, JobStatus.COMPLETED, JobStatus.CAPTURED, JobStatus.CLOSED}
    ),
    JobStatus.CAPTURED: frozenset({JobStatus.PAID_OUT}),
    JobStatus.PAID_OUT: frozenset({JobStatus.CLOSED}),
    JobStatus.RESCHEDULE_REQUIRED: frozenset({JobStatus.BOOKED}),
    JobStatus.FLAGGED_REVIEW: frozenset({JobStatus.ASSIGNING, JobStatus.RESCHEDULE_REQUIRED}),
    JobStatus.CLOSED: frozenset(),
    JobStatus.CANCELLED_FREE: frozenset(),
    JobStatus.CANCELLED_CHARGED: frozenset(),
}


def _build_transitions() -> Dict[JobStatus, FrozenSet[JobStatus]]:
    table = {}
    for status in JobStatus:
        successors = set(_FORWARD_TRANSITIONS.get(status, frozenset()))
        if status not in TERMINAL_STATUSES:
            successors |= CANCELLED_STATUSES
        table[status] = frozenset(successors)
    return table


VALID_JOB_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = _build_transitions()


def can_transition(from_status: str, to_status: str) -> bool:
    """Structural legality only; role and precondition checks live elsewhere."""
    try:
        current = JobStatus(from_status)
        target = JobStatus(to_status)
    except ValueError:
        return False
    return target in VALID_JOB_TRANSITIONS[current]


def next_statuses(from_status: str) -> List[JobStatus]:
    """Legal successors of a status, in declaration order."""
    current = JobStatus(from_status)
    allowed = VALID_JOB_TRANSITIONS[current]
    return [s for s in JobStatus if s in allowed]


# =============================================================================
# Job
# =============================================================================


@dataclass
class Job:
    """A customer request for home services."""

    id: str
    customer_id: str
    description: str
    location: str = ""
    category: str = "HANDYMAN"
    status: str = JobStatus.REQUESTED.value
    provider_id: Optional[str] = None
    fixed_price: Decimal = Decimal("0")

    # Scheduling
    is_asap: bool = False
    scheduled_at: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    # Offer pointer
    offered_to_id: Optional[str] = None
    offered_at: Optional[datetime] = None
    declined_provider_ids: List[str] = field(default_factory=list)

    # Work timer
    timer_started_at: Optional[datetime] = None
    timer_paused_at: Optional[datetime] = None
    timer_paused_for_parts: bool = False
    timer_paused_seconds: int = 0
    timer_stopped_at: Optional[datetime] = None

    # Disputes
    issue_raised_by: Optional[str] = None
    issue_raised_by_id: Optional[str] = None
    issue_reason_code: Optional[str] = None
    issue_description: Optional[str] = None
    issue_evidence: List[str] = field(default_factory=list)
    issue_raised_at: Optional[datetime] = None
    issue_resolution: Optional[str] = None
    issue_resolved_at: Optional[datetime] = None
    payout_frozen: bool = False
    timer_frozen_for_issue: bool = False

    # Flags
    flag_reason: Optional[str] = None
    flag_note: Optional[str] = None
    flag_system_action: Optional[str] = None
    flagged_by_id: Optional[str] = None
    flagged_at: Optional[datetime] = None
    flag_evidence: List[str] = field(default_factory=list)

    # Cancellation
    cancellation_reason: Optional[str] = None
    cancelled_by_role: Optional[str] = None
    cancellation_fee: Optional[Decimal] = None
    cancelled_at: Optional[datetime] = None

    # Payment (simulated)
    preauth_reference: Optional[str] = None
    payment_reference: Optional[str] = None
    parts_cost: Decimal = Decimal("0")

    # Milestones
    price_locked_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    captured_at: Optional[datetime] = None
    paid_out_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    status_updated_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.status, JobStatus):
            self.status = self.status.value
        valid = {s.value for s in JobStatus}
        if self.status not in valid:
            raise ValueError(f"Invalid status: {self.status}. Must be one of {sorted(valid)}")
        if not self.customer_id:
            raise ValueError("customer_id is required")
        if len(self.description) > 2000:
            raise ValueError("Description too long (max 2000 characters)")
        self.fixed_price = Decimal(str(self.fixed_price))
        if self.fixed_price < 0:
            raise ValueError("Price cannot be negative")

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status) in TERMINAL_STATUSES

    def can_transition_to(self, new_status: JobStatus) -> bool:
        """Check if transition to new_status is structurally valid."""
        return can_transition(self.status, JobStatus(new_status).value)

    def elapsed_work_seconds(self, now: datetime) -> int:
        """Seconds of work on the clock, excluding paused time."""
        if self.timer_started_at is None:
            return 0
        end = self.timer_stopped_at or self.timer_paused_at or now
        elapsed = (end - self.timer_started_at).total_seconds() - self.timer_paused_seconds
        return max(0, int(elapsed))


def pause_timer_fields(job: Job, now: datetime, for_parts: bool = False) -> Dict[str, Any]:
    """Column updates that pause the work timer. Pausing twice keeps the first pause."""
    if job.timer_paused_at is not None:
        return {"timer_paused_for_parts": job.timer_paused_for_parts or for_parts}
    return {"timer_paused_at": now, "timer_paused_for_parts": for_parts}


def resume_timer_fields(job: Job, now: datetime) -> Dict[str, Any]:
    """Column updates that resume the work timer and bank the paused time."""
    if job.timer_paused_at is None:
        return {"timer_paused_for_parts": False}
    paused = int((now - job.timer_paused_at).total_seconds())
    return {
        "timer_paused_at": None,
        "timer_paused_for_parts": False,
        "timer_paused_seconds": job.timer_paused_seconds + max(0, paused),
    }


# =============================================================================
# Visits and scope
# =============================================================================


class VisitStatus(str, Enum):
    """Visit lifecycle status."""

    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    MISMATCH = "MISMATCH"
    ISSUE_PENDING = "ISSUE_PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PartsStatus(str, Enum):
    """Parts request decision status."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@dataclass
class Visit:
    """A capability-homogeneous bundle of items priced as one unit."""

    id: str
    job_id: str
    capability_tag: str
    primary_item_id: str
    pricing_ladder: str
    base_minutes: int
    effective_minutes: int
    tier: str
    price: Decimal
    visit_type_label: str = ""
    addon_item_ids: List[str] = field(default_factory=list)
    status: str = VisitStatus.DRAFT.value

    parts_status: Optional[str] = None
    parts_breakdown: List[Dict[str, Any]] = field(default_factory=list)
    parts_notes: Optional[str] = None
    parts_evidence: List[str] = field(default_factory=list)
    parts_requested_at: Optional[datetime] = None
    parts_decided_at: Optional[datetime] = None

    mismatch_reason: Optional[str] = None
    mismatch_notes: Optional[str] = None
    mismatch_extra_minutes: Optional[int] = None
    mismatch_evidence: List[str] = field(default_factory=list)
    mismatch_reported_at: Optional[datetime] = None

    locked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.status, VisitStatus):
            self.status = self.status.value
        if self.status not in {s.value for s in VisitStatus}:
            raise ValueError(f"Invalid visit status: {self.status}")
        if isinstance(self.parts_status, PartsStatus):
            self.parts_status = self.parts_status.value
        if self.parts_status is not None and self.parts_status not in {
            s.value for s in PartsStatus
        }:
            raise ValueError(f"Invalid parts status: {self.parts_status}")
        self.price = Decimal(str(self.price))
        if self.base_minutes < 0 or self.effective_minutes < 0:
            raise ValueError("Visit minutes cannot be negative")

    @property
    def item_ids(self) -> List[str]:
        return [self.primary_item_id, *self.addon_item_ids]

    @property
    def is_locked(self) -> bool:
        return self.status != VisitStatus.DRAFT.value

    @property
    def is_cancelled(self) -> bool:
        return self.status == VisitStatus.CANCELLED.value

    @property
    def parts_total(self) -> Decimal:
        return sum((Decimal(str(p.get("cost", 0))) for p in self.parts_breakdown), Decimal("0"))


# Contract text shown to the customer and frozen into every ScopeSummary
SCOPE_INCLUDES_TEXT = "This visit covers the items listed above."
SCOPE_EXCLUDES_TEXT = (
    "Additional or unrelated tasks not listed. Invasive work, regulated work, "
    "or specialist repairs unless explicitly booked."
)
SCOPE_PARTS_RULE_TEXT = (
    "Labour price is fixed. Parts are only supplied with your approval and "
    "charged at cost with receipt."
)
SCOPE_MISMATCH_RULE_TEXT = (
    "If the job is different on arrival, we'll upgrade the visit or rebook. "
    "No arguments on site."
)


@dataclass(frozen=True)
class ScopeSummary:
    """Immutable contract snapshot written once per visit at lock time."""

    visit_id: str
    job_id: str
    tier: str
    price: Decimal
    effective_minutes: int
    answers: Dict[str, Any] = field(default_factory=dict)
    photo_keys: List[str] = field(default_factory=list)
    includes_text: str = SCOPE_INCLUDES_TEXT
    excludes_text: str = SCOPE_EXCLUDES_TEXT
    parts_rule_text: str = SCOPE_PARTS_RULE_TEXT
    mismatch_rule_text: str = SCOPE_MISMATCH_RULE_TEXT
    created_at: Optional[datetime] = None


# =============================================================================
# Audit, ledger, reviews
# =============================================================================


@dataclass
class JobStateChange:
    """Audit log entry for a job status change. Never mutated."""

    id: str
    job_id: str
    from_status: str
    to_status: str
    actor_role: str
    actor_id: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class TransactionType(str, Enum):
    CHARGE = "CHARGE"
    PAYOUT = "PAYOUT"
    FEE = "FEE"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


@dataclass
class Transaction:
    """Ledger entry."""

    id: str
    job_id: str
    type: str
    amount: Decimal
    status: str = TransactionStatus.PENDING.value
    user_id: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.type, TransactionType):
            self.type = self.type.value
        if isinstance(self.status, TransactionStatus):
            self.status = self.status.value
        if self.type not in {t.value for t in TransactionType}:
            raise ValueError(f"Invalid transaction type: {self.type}")
        if self.status not in {s.value for s in TransactionStatus}:
            raise ValueError(f"Invalid transaction status: {self.status}")
        self.amount = Decimal(str(self.amount))
        if self.amount < 0:
            raise ValueError("Transaction amount cannot be negative")


class ReviewKind(str, Enum):
    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"


@dataclass
class Review:
    """A review of a finished job. One per job per kind."""

    job_id: str
    kind: str
    reviewer_id: str
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.kind, ReviewKind):
            self.kind = self.kind.value
        if self.kind not in {k.value for k in ReviewKind}:
            raise ValueError(f"Invalid review kind: {self.kind}")
        if not 1 <= int(self.rating) <= 5:
            raise ValueError("Rating must be between 1 and 5")


# =============================================================================
# Providers
# =============================================================================


class ProviderType(str, Enum):
    GENERALIST = "GENERALIST"
    SPECIALIST = "SPECIALIST"


class ProviderStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


@dataclass
class Provider:
    """A tradesperson in the dispatch pool."""

    id: str
    name: str
    provider_type: str = ProviderType.GENERALIST.value
    status: str = ProviderStatus.ACTIVE.value
    is_online: bool = False
    capabilities: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def __post_init__(self):
        if isinstance(self.provider_type, ProviderType):
            self.provider_type = self.provider_type.value
        if isinstance(self.status, ProviderStatus):
            self.status = self.status.value
        if self.provider_type not in {t.value for t in ProviderType}:
            raise ValueError(f"Invalid provider type: {self.provider_type}")
        if self.status not in {s.value for s in ProviderStatus}:
            raise ValueError(f"Invalid provider status: {self.status}")

    @property
    def is_available(self) -> bool:
        return self.status == ProviderStatus.ACTIVE.value and self.is_online
