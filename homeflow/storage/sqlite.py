"""SQLite storage for homeflow.

Every write happens inside ``SQLiteStore.transaction()``, which opens a
``BEGIN IMMEDIATE`` unit: reads made through the yielded session see the
freshest committed state, and all writes commit or roll back together.
Concurrency-sensitive writes are conditional updates whose affected-row
count tells the caller whether it won the race.
"""

import contextlib
import json
import logging
import sqlite3
from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Union

from homeflow.errors import ConflictError, HomeflowError, InternalError
from homeflow.jobs.models import (
    Job,
    JobStateChange,
    Provider,
    Review,
    ScopeSummary,
    Transaction,
    Visit,
)
from homeflow.storage.schema import init_db, validate_table_name

logger = logging.getLogger(__name__)


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string."""
    if not s:
        return None
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def _encode(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=str)
    return value


@dataclass(frozen=True)
class _Codec:
    """Maps a dataclass to a table whose columns share its field names."""

    model: type
    table: str
    datetimes: FrozenSet[str] = frozenset()
    decimals: FrozenSet[str] = frozenset()
    jsons: FrozenSet[str] = frozenset()
    bools: FrozenSet[str] = frozenset()

    @property
    def columns(self) -> List[str]:
        return [f.name for f in fields(self.model)]

    def to_row(self, obj: Any) -> Dict[str, Any]:
        return {name: _encode(getattr(obj, name)) for name in self.columns}

    def from_row(self, row: sqlite3.Row) -> Any:
        data = {}
        for name in self.columns:
            value = row[name]
            if name in self.datetimes:
                value = parse_datetime(value)
            elif name in self.decimals:
                value = Decimal(value) if value is not None else None
            elif name in self.jsons:
                value = json.loads(value) if value else self._empty(name)
            elif name in self.bools:
                value = bool(value)
            data[name] = value
        return self.model(**data)

    def _empty(self, name: str) -> Any:
        for f in fields(self.model):
            if f.name == name and f.default_factory is not dict:
                return []
        return {}

    def encode_updates(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        columns = set(self.columns)
        unknown = set(updates) - columns
        if unknown:
            raise ValueError(f"Unknown {self.table} columns: {sorted(unknown)}")
        return {name: _encode(value) for name, value in updates.items()}


JOB_CODEC = _Codec(
    model=Job,
    table="jobs",
    datetimes=frozenset(
        {
            "scheduled_at",
            "offered_at",
            "timer_started_at",
            "timer_paused_at",
            "timer_stopped_at",
            "issue_raised_at",
            "issue_resolved_at",
            "flagged_at",
            "cancelled_at",
            "price_locked_at",
            "accepted_at",
            "completed_at",
            "captured_at",
            "paid_out_at",
            "closed_at",
            "created_at",
            "status_updated_at",
        }
    ),
    decimals=frozenset({"fixed_price", "cancellation_fee", "parts_cost"}),
    jsons=frozenset({"declined_provider_ids", "issue_evidence", "flag_evidence"}),
    bools=frozenset({"is_asap", "timer_paused_for_parts", "payout_frozen", "timer_frozen_for_issue"}),
)

VISIT_CODEC = _Codec(
    model=Visit,
    table="visits",
    datetimes=frozenset(
        {
            "parts_requested_at",
            "parts_decided_at",
            "mismatch_reported_at",
            "locked_at",
            "created_at",
        }
    ),
    decimals=frozenset({"price"}),
    jsons=frozenset({"addon_item_ids", "parts_breakdown", "parts_evidence", "mismatch_evidence"}),
)

SUMMARY_CODEC = _Codec(
    model=ScopeSummary,
    table="scope_summaries",
    datetimes=frozenset({"created_at"}),
    decimals=frozenset({"price"}),
    jsons=frozenset({"answers", "photo_keys"}),
)

STATE_CHANGE_CODEC = _Codec(
    model=JobStateChange, table="job_state_changes", datetimes=frozenset({"created_at"})
)

TRANSACTION_CODEC = _Codec(
    model=Transaction,
    table="transactions",
    datetimes=frozenset({"created_at"}),
    decimals=frozenset({"amount"}),
)

REVIEW_CODEC = _Codec(model=Review, table="reviews", datetimes=frozenset({"created_at"}))

PROVIDER_CODEC = _Codec(
    model=Provider,
    table="providers",
    jsons=frozenset({"capabilities", "categories"}),
    bools=frozenset({"is_online"}),
)


def _where(conditions: Dict[str, Any]) -> tuple:
    """Build a WHERE clause; a None value means IS NULL."""
    clauses = []
    params = []
    for column, value in conditions.items():
        if value is None:
            clauses.append(f"{column} IS NULL")
        else:
            clauses.append(f"{column} = ?")
            params.append(_encode(value))
    return " AND ".join(clauses), params


class StoreSession:
    """Operations bound to one open transaction."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # === Generic helpers ===

    def _insert(self, codec: _Codec, obj: Any) -> None:
        table = validate_table_name(codec.table)
        row = codec.to_row(obj)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        self.conn.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", list(row.values())
        )

    def _update(
        self,
        codec: _Codec,
        key: Dict[str, Any],
        updates: Dict[str, Any],
        expect: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Conditional update. Returns the affected-row count."""
        if not updates:
            return 0
        table = validate_table_name(codec.table)
        encoded = codec.encode_updates(updates)
        conditions = dict(key)
        if expect:
            codec.encode_updates(expect)  # validates column names
            conditions.update(expect)
        where, where_params = _where(conditions)
        assignments = ", ".join(f"{column} = ?" for column in encoded)
        cursor = self.conn.execute(
            f"UPDATE {table} SET {assignments} WHERE {where}",
            list(encoded.values()) + where_params,
        )
        return cursor.rowcount

    def _select(
        self, codec: _Codec, conditions: Dict[str, Any], order_by: str = "rowid", limit: int = 0
    ) -> List[Any]:
        table = validate_table_name(codec.table)
        sql = f"SELECT * FROM {table}"
        params: List[Any] = []
        if conditions:
            where, params = _where(conditions)
            sql += f" WHERE {where}"
        sql += f" ORDER BY {order_by}"
        if limit:
            sql += f" LIMIT {int(limit)}"
        return [codec.from_row(row) for row in self.conn.execute(sql, params).fetchall()]

    # === Jobs ===

    def insert_job(self, job: Job) -> str:
        self._insert(JOB_CODEC, job)
        return job.id

    def get_job(self, job_id: str) -> Optional[Job]:
        rows = self._select(JOB_CODEC, {"id": job_id})
        return rows[0] if rows else None

    def list_jobs(
        self,
        statuses: Optional[Iterable[str]] = None,
        customer_id: Optional[str] = None,
        provider_id: Optional[str] = None,
        limit: int = 500,
    ) -> List[Job]:
        sql = "SELECT * FROM jobs WHERE 1 = 1"
        params: List[Any] = []
        if statuses is not None:
            values = [_encode(s) for s in statuses]
            if not values:
                return []
            sql += f" AND status IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        if customer_id:
            sql += " AND customer_id = ?"
            params.append(customer_id)
        if provider_id:
            sql += " AND provider_id = ?"
            params.append(provider_id)
        sql += " ORDER BY created_at, rowid LIMIT ?"
        params.append(int(limit))
        return [JOB_CODEC.from_row(row) for row in self.conn.execute(sql, params).fetchall()]

    def update_job_fields(
        self, job_id: str, updates: Dict[str, Any], expect: Optional[Dict[str, Any]] = None
    ) -> int:
        return self._update(JOB_CODEC, {"id": job_id}, updates, expect)

    # === Visits ===

    def insert_visit(self, visit: Visit) -> str:
        self._insert(VISIT_CODEC, visit)
        return visit.id

    def get_visit(self, visit_id: str) -> Optional[Visit]:
        rows = self._select(VISIT_CODEC, {"id": visit_id})
        return rows[0] if rows else None

    def list_visits(self, job_id: str) -> List[Visit]:
        return self._select(VISIT_CODEC, {"job_id": job_id})

    def update_visit_fields(
        self, visit_id: str, updates: Dict[str, Any], expect: Optional[Dict[str, Any]] = None
    ) -> int:
        return self._update(VISIT_CODEC, {"id": visit_id}, updates, expect)

    # === Scope summaries ===

    def insert_scope_summary(self, summary: ScopeSummary) -> None:
        """Write a summary. A second write for the same visit is a ConflictError."""
        try:
            self._insert(SUMMARY_CODEC, summary)
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Visit {summary.visit_id} already has a scope summary") from e

    def get_scope_summary(self, visit_id: str) -> Optional[ScopeSummary]:
        rows = self._select(SUMMARY_CODEC, {"visit_id": visit_id})
        return rows[0] if rows else None

    # === Audit log ===

    def insert_state_change(self, change: JobStateChange) -> str:
        self._insert(STATE_CHANGE_CODEC, change)
        return change.id

    def list_state_changes(self, job_id: str) -> List[JobStateChange]:
        return self._select(STATE_CHANGE_CODEC, {"job_id": job_id})

    # === Ledger ===

    def insert_transaction(self, transaction: Transaction) -> str:
        self._insert(TRANSACTION_CODEC, transaction)
        return transaction.id

    def list_transactions(
        self, job_id: str, type: Optional[str] = None, status: Optional[str] = None
    ) -> List[Transaction]:
        conditions: Dict[str, Any] = {"job_id": job_id}
        if type:
            conditions["type"] = type
        if status:
            conditions["status"] = status
        return self._select(TRANSACTION_CODEC, conditions)

    def complete_transactions(self, job_id: str, type: str) -> int:
        """Mark all pending transactions of a type as completed."""
        return self._update(
            TRANSACTION_CODEC,
            {"job_id": job_id, "type": type},
            {"status": "COMPLETED"},
            expect={"status": "PENDING"},
        )

    # === Reviews ===

    def upsert_review(self, review: Review) -> None:
        row = REVIEW_CODEC.to_row(review)
        self.conn.execute(
            """
            INSERT INTO reviews (job_id, kind, reviewer_id, rating, comment, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(job_id, kind) DO UPDATE SET
                reviewer_id = excluded.reviewer_id,
                rating = excluded.rating,
                comment = excluded.comment,
                created_at = excluded.created_at
            """,
            [row[c] for c in ("job_id", "kind", "reviewer_id", "rating", "comment", "created_at")],
        )

    def get_review(self, job_id: str, kind: str) -> Optional[Review]:
        rows = self._select(REVIEW_CODEC, {"job_id": job_id, "kind": kind})
        return rows[0] if rows else None

    def list_reviews(self, job_id: str) -> List[Review]:
        return self._select(REVIEW_CODEC, {"job_id": job_id})

    # === Providers ===

    def upsert_provider(self, provider: Provider) -> str:
        row = PROVIDER_CODEC.to_row(provider)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        assignments = ", ".join(f"{c} = excluded.{c}" for c in row if c != "id")
        self.conn.execute(
            f"INSERT INTO providers ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {assignments}",
            list(row.values()),
        )
        return provider.id

    def get_provider(self, provider_id: str) -> Optional[Provider]:
        rows = self._select(PROVIDER_CODEC, {"id": provider_id})
        return rows[0] if rows else None

    def list_providers(self, available_only: bool = False) -> List[Provider]:
        conditions = {"status": "ACTIVE", "is_online": True} if available_only else {}
        return self._select(PROVIDER_CODEC, conditions, order_by="id")

    def set_provider_online(self, provider_id: str, is_online: bool) -> int:
        return self._update(PROVIDER_CODEC, {"id": provider_id}, {"is_online": is_online})


class SQLiteStore:
    """SQLite-backed persistent store."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._get_conn()
        try:
            init_db(conn)
        finally:
            conn.close()

    def _get_conn(self) -> sqlite3.Connection:
        """Open a connection in manual-transaction mode.

        Callers must close it; prefer ``transaction()``.
        """
        conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextlib.contextmanager
    def transaction(self) -> Iterator[StoreSession]:
        """Context manager that handles the transaction AND closes the connection.

        - ``BEGIN IMMEDIATE`` on entry, so writers are serialized
        - commit on success
        - rollback on any exception; unexpected sqlite errors surface as
          InternalError
        """
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield StoreSession(conn)
            conn.execute("COMMIT")
        except HomeflowError as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        except sqlite3.Error as e:
            logger.error(f"Storage error, rolling back: {e}")
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise InternalError(f"Storage error: {e}") from e
        except Exception as e:
            logger.error(f"Unexpected error, rolling back: {e}")
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    @contextlib.contextmanager
    def reader(self) -> Iterator[StoreSession]:
        """Read-only session without taking the write lock."""
        conn = self._get_conn()
        try:
            yield StoreSession(conn)
        finally:
            conn.close()

    # === Convenience reads ===

    def get_job(self, job_id: str) -> Optional[Job]:
        with self.reader() as session:
            return session.get_job(job_id)

    def list_jobs(self, statuses: Optional[Iterable[str]] = None, **filters) -> List[Job]:
        with self.reader() as session:
            return session.list_jobs(statuses=statuses, **filters)

    def get_visit(self, visit_id: str) -> Optional[Visit]:
        with self.reader() as session:
            return session.get_visit(visit_id)

    def list_visits(self, job_id: str) -> List[Visit]:
        with self.reader() as session:
            return session.list_visits(job_id)

    def get_scope_summary(self, visit_id: str) -> Optional[ScopeSummary]:
        with self.reader() as session:
            return session.get_scope_summary(visit_id)

    def list_state_changes(self, job_id: str) -> List[JobStateChange]:
        with self.reader() as session:
            return session.list_state_changes(job_id)

    def list_transactions(self, job_id: str, **filters) -> List[Transaction]:
        with self.reader() as session:
            return session.list_transactions(job_id, **filters)

    def list_reviews(self, job_id: str) -> List[Review]:
        with self.reader() as session:
            return session.list_reviews(job_id)

    def get_provider(self, provider_id: str) -> Optional[Provider]:
        with self.reader() as session:
            return session.get_provider(provider_id)

    def list_providers(self, available_only: bool = False) -> List[Provider]:
        with self.reader() as session:
            return session.list_providers(available_only=available_only)

    def save_provider(self, provider: Provider) -> str:
        with self.transaction() as session:
            return session.upsert_provider(provider)
