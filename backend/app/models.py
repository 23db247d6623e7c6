"""Pydantic models for API requests and responses."""

import base64
import binascii
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from homeflow.jobs.models import Job, JobStateChange, Transaction, Visit

MAX_PHOTOS = 10

# =============================================================================
# Shared Request Pieces
# =============================================================================


class PhotoUpload(BaseModel):
    """Mixin for requests that attach base64-encoded photos."""

    photos: list[str] = Field(default_factory=list, max_length=MAX_PHOTOS)

    @field_validator("photos")
    @classmethod
    def photos_must_be_base64(cls, v: list[str]) -> list[str]:
        for photo in v:
            try:
                base64.b64decode(photo, validate=True)
            except (binascii.Error, ValueError):
                raise ValueError("Photos must be base64-encoded")
        return v

    def photo_bytes(self) -> list[bytes]:
        return [base64.b64decode(p) for p in self.photos]


class ReasonRequest(BaseModel):
    """Request carrying an optional free-text reason."""

    reason: str | None = Field(None, max_length=500)


# =============================================================================
# Responses
# =============================================================================


class VisitResponse(BaseModel):
    """Visit details."""

    id: str
    job_id: str
    capability_tag: str
    primary_item_id: str
    addon_item_ids: list[str]
    visit_type_label: str
    pricing_ladder: str
    base_minutes: int
    effective_minutes: int
    tier: str
    price: Decimal
    status: str
    parts_status: str | None = None
    parts_breakdown: list[dict[str, Any]] = Field(default_factory=list)
    mismatch_reason: str | None = None
    mismatch_extra_minutes: int | None = None
    locked_at: datetime | None = None


class JobResponse(BaseModel):
    """Job details response."""

    id: str
    customer_id: str
    provider_id: str | None = None
    description: str
    location: str
    category: str
    status: str
    fixed_price: Decimal
    parts_cost: Decimal
    is_asap: bool
    scheduled_at: datetime | None = None
    offered_to_id: str | None = None
    offered_at: datetime | None = None
    flag_reason: str | None = None
    flag_system_action: str | None = None
    issue_raised_by: str | None = None
    issue_reason_code: str | None = None
    issue_resolution: str | None = None
    payout_frozen: bool = False
    timer_frozen_for_issue: bool = False
    cancellation_fee: Decimal | None = None
    payment_reference: str | None = None
    price_locked_at: datetime | None = None
    accepted_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    status_updated_at: datetime | None = None
    visits: list[VisitResponse] = Field(default_factory=list)


class StateChangeResponse(BaseModel):
    """One audit row."""

    from_status: str
    to_status: str
    actor_role: str
    actor_id: str | None = None
    reason: str | None = None
    created_at: datetime


class TransactionResponse(BaseModel):
    """Ledger entry."""

    id: str
    type: str
    amount: Decimal
    status: str
    user_id: str | None = None
    description: str | None = None


def _pick(model: type[BaseModel], data: dict) -> dict:
    return {k: v for k, v in data.items() if k in model.model_fields}


def to_visit_response(visit: Visit) -> VisitResponse:
    return VisitResponse(**_pick(VisitResponse, asdict(visit)))


def to_job_response(job: Job, visits: list[Visit] | None = None) -> JobResponse:
    data = _pick(JobResponse, asdict(job))
    data["visits"] = [to_visit_response(v) for v in visits or []]
    return JobResponse(**data)


def to_state_change_response(change: JobStateChange) -> StateChangeResponse:
    return StateChangeResponse(**_pick(StateChangeResponse, asdict(change)))


def to_transaction_response(transaction: Transaction) -> TransactionResponse:
    return TransactionResponse(**_pick(TransactionResponse, asdict(transaction)))
