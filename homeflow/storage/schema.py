"""Database schema for homeflow SQLite storage.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Database initialization (init_db)
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Allowed table names for SQL queries (prevents SQL injection via table names)
ALLOWED_TABLES = frozenset(
    {
        "jobs",
        "visits",
        "scope_summaries",
        "job_state_changes",
        "transactions",
        "reviews",
        "providers",
        "schema_version",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against the allowlist.

    Raises:
        ValueError: If the table name is not allowed
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    customer_id TEXT NOT NULL,
    description TEXT NOT NULL,
    location TEXT,
    category TEXT NOT NULL,
    status TEXT NOT NULL,
    provider_id TEXT,
    fixed_price TEXT NOT NULL DEFAULT '0',
    is_asap INTEGER NOT NULL DEFAULT 0,
    scheduled_at TEXT,
    latitude REAL,
    longitude REAL,
    offered_to_id TEXT,
    offered_at TEXT,
    declined_provider_ids TEXT,
    timer_started_at TEXT,
    timer_paused_at TEXT,
    timer_paused_for_parts INTEGER NOT NULL DEFAULT 0,
    timer_paused_seconds INTEGER NOT NULL DEFAULT 0,
    timer_stopped_at TEXT,
    issue_raised_by TEXT,
    issue_raised_by_id TEXT,
    issue_reason_code TEXT,
    issue_description TEXT,
    issue_evidence TEXT,
    issue_raised_at TEXT,
    issue_resolution TEXT,
    issue_resolved_at TEXT,
    payout_frozen INTEGER NOT NULL DEFAULT 0,
    timer_frozen_for_issue INTEGER NOT NULL DEFAULT 0,
    flag_reason TEXT,
    flag_note TEXT,
    flag_system_action TEXT,
    flagged_by_id TEXT,
    flagged_at TEXT,
    flag_evidence TEXT,
    cancellation_reason TEXT,
    cancelled_by_role TEXT,
    cancellation_fee TEXT,
    cancelled_at TEXT,
    preauth_reference TEXT,
    payment_reference TEXT,
    parts_cost TEXT NOT NULL DEFAULT '0',
    price_locked_at TEXT,
    accepted_at TEXT,
    completed_at TEXT,
    captured_at TEXT,
    paid_out_at TEXT,
    closed_at TEXT,
    created_at TEXT,
    status_updated_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);
CREATE INDEX IF NOT EXISTS idx_jobs_customer ON jobs(customer_id);
CREATE INDEX IF NOT EXISTS idx_jobs_provider ON jobs(provider_id);

CREATE TABLE IF NOT EXISTS visits (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(id),
    capability_tag TEXT NOT NULL,
    primary_item_id TEXT NOT NULL,
    pricing_ladder TEXT NOT NULL,
    base_minutes INTEGER NOT NULL,
    effective_minutes INTEGER NOT NULL,
    tier TEXT NOT NULL,
    price TEXT NOT NULL,
    visit_type_label TEXT,
    addon_item_ids TEXT,
    status TEXT NOT NULL,
    parts_status TEXT,
    parts_breakdown TEXT,
    parts_notes TEXT,
    parts_evidence TEXT,
    parts_requested_at TEXT,
    parts_decided_at TEXT,
    mismatch_reason TEXT,
    mismatch_notes TEXT,
    mismatch_extra_minutes INTEGER,
    mismatch_evidence TEXT,
    mismatch_reported_at TEXT,
    locked_at TEXT,
    created_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_visits_job ON visits(job_id);

-- One summary per visit, written once at scope lock
CREATE TABLE IF NOT EXISTS scope_summaries (
    visit_id TEXT PRIMARY KEY REFERENCES visits(id),
    job_id TEXT NOT NULL,
    tier TEXT NOT NULL,
    price TEXT NOT NULL,
    effective_minutes INTEGER NOT NULL,
    answers TEXT,
    photo_keys TEXT,
    includes_text TEXT NOT NULL,
    excludes_text TEXT NOT NULL,
    parts_rule_text TEXT NOT NULL,
    mismatch_rule_text TEXT NOT NULL,
    created_at TEXT
);

-- Append-only audit log
CREATE TABLE IF NOT EXISTS job_state_changes (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(id),
    from_status TEXT NOT NULL,
    to_status TEXT NOT NULL,
    actor_role TEXT NOT NULL,
    actor_id TEXT,
    reason TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_state_changes_job ON job_state_changes(job_id);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(id),
    type TEXT NOT NULL,
    amount TEXT NOT NULL,
    status TEXT NOT NULL,
    user_id TEXT,
    description TEXT,
    created_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_transactions_job ON transactions(job_id);

CREATE TABLE IF NOT EXISTS reviews (
    job_id TEXT NOT NULL REFERENCES jobs(id),
    kind TEXT NOT NULL,
    reviewer_id TEXT NOT NULL,
    rating INTEGER NOT NULL,
    comment TEXT,
    created_at TEXT,
    PRIMARY KEY (job_id, kind)
);

CREATE TABLE IF NOT EXISTS providers (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    provider_type TEXT NOT NULL,
    status TEXT NOT NULL,
    is_online INTEGER NOT NULL DEFAULT 0,
    capabilities TEXT,
    categories TEXT,
    latitude REAL,
    longitude REAL
);
"""


def init_db(conn: sqlite3.Connection) -> None:
    """Create tables (idempotent) and record the schema version."""
    conn.executescript(SCHEMA)
    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        logger.info(f"Initialized homeflow schema v{SCHEMA_VERSION}")
    elif row[0] != SCHEMA_VERSION:
        logger.warning(f"Schema version {row[0]} differs from expected {SCHEMA_VERSION}")
