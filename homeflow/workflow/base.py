"""Shared plumbing for workflow operations."""

import contextlib
import logging
import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterator, List, Optional, Sequence

from homeflow.catalogue.source import CatalogueSource
from homeflow.config import HomeflowConfig
from homeflow.dispatch.engine import DispatchEngine
from homeflow.errors import JobNotFoundError, ValidationError, VisitNotFoundError
from homeflow.evidence import EvidenceStore, PhotoType
from homeflow.jobs.models import Job, Transaction, TransactionStatus, TransactionType, Visit
from homeflow.jobs.state_machine import JobStateMachine
from homeflow.logging_config import log_ledger
from homeflow.storage.sqlite import SQLiteStore, StoreSession

logger = logging.getLogger(__name__)

PENNY = Decimal("0.01")
MAX_PHOTOS = 10
MAX_NOTE_LENGTH = 2000


def money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(PENNY, rounding=ROUND_HALF_UP)


class WorkflowBase:
    """Collaborators and helpers used by every workflow mixin."""

    store: SQLiteStore
    catalogue: CatalogueSource
    state_machine: JobStateMachine
    dispatch: DispatchEngine
    evidence: Optional[EvidenceStore]
    config: HomeflowConfig
    clock: Callable[[], datetime]

    # === Lookups ===

    def _load_job(self, session: StoreSession, job_id: str) -> Job:
        job = session.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _load_visit(self, session: StoreSession, visit_id: str) -> Visit:
        visit = session.get_visit(visit_id)
        if visit is None:
            raise VisitNotFoundError(visit_id)
        return visit

    # === Input validation ===

    def _validate_text(
        self, value: Optional[str], name: str, required: bool = True, max_length: int = MAX_NOTE_LENGTH
    ) -> Optional[str]:
        if value is None or not str(value).strip():
            if required:
                raise ValidationError(f"{name} is required")
            return None
        value = str(value).strip()
        if len(value) > max_length:
            raise ValidationError(f"{name} too long (max {max_length} characters)")
        return value

    def _store_photos(
        self,
        job_id: str,
        owner_id: str,
        photo_type: PhotoType,
        photos: Optional[Sequence[bytes]],
        required: bool = False,
    ) -> List[str]:
        photos = list(photos or [])
        if required and not photos:
            raise ValidationError("At least one photo is required as evidence")
        if len(photos) > MAX_PHOTOS:
            raise ValidationError(f"At most {MAX_PHOTOS} photos may be attached")
        if not photos:
            return []
        if self.evidence is None:
            raise ValidationError("Photo uploads are not configured")
        return self.evidence.put_many(job_id, owner_id, photo_type, photos)

    @contextlib.contextmanager
    def _photos_discarded_on_error(self, keys: Sequence[str]) -> Iterator[None]:
        """Delete freshly stored photos if the write that records them fails."""
        try:
            yield
        except Exception:
            for key in keys:
                try:
                    self.evidence.delete(key)
                except OSError as e:
                    logger.warning(f"Could not delete orphan evidence {key}: {e}")
            if keys:
                logger.info(f"Discarded {len(keys)} photo(s) after a failed write")
            raise

    # === Ledger ===

    def _record_transaction(
        self,
        session: StoreSession,
        job_id: str,
        type: TransactionType,
        amount: Decimal,
        user_id: Optional[str],
        status: TransactionStatus = TransactionStatus.PENDING,
        description: Optional[str] = None,
    ) -> Transaction:
        transaction = Transaction(
            id=str(uuid.uuid4()),
            job_id=job_id,
            type=type,
            amount=money(amount),
            status=status,
            user_id=user_id,
            description=description,
            created_at=self.clock(),
        )
        session.insert_transaction(transaction)
        log_ledger(job_id, transaction.type, str(transaction.amount), transaction.status)
        return transaction

    # === Pricing ===

    def _recompute_job_price(self, session: StoreSession, job_id: str) -> Decimal:
        """Set the job's fixed price to the sum of its live visits."""
        visits = [v for v in session.list_visits(job_id) if not v.is_cancelled]
        total = sum((v.price for v in visits), Decimal("0"))
        session.update_job_fields(job_id, {"fixed_price": total})
        return total
