"""Tests for SQLite storage: round trips, conditional updates, rollback."""

import sqlite3
from decimal import Decimal

import pytest

from flow_helpers import START
from homeflow.errors import ConflictError, InternalError, ValidationError
from homeflow.jobs.models import Job, Provider, Review, ScopeSummary, Transaction, Visit
from homeflow.storage.schema import SCHEMA_VERSION, validate_table_name


def make_job(job_id="job-1", **kwargs):
    return Job(
        id=job_id,
        customer_id="cust-1",
        description="Mount a TV",
        fixed_price=Decimal("69"),
        declined_provider_ids=["p-x"],
        is_asap=True,
        scheduled_at=START,
        created_at=START,
        **kwargs,
    )


def make_visit(visit_id="v1", job_id="job-1"):
    return Visit(
        id=visit_id,
        job_id=job_id,
        capability_tag="HANDYMAN",
        primary_item_id="tv_mount_standard",
        addon_item_ids=["wall_hole_fill"],
        pricing_ladder="STANDARD",
        base_minutes=60,
        effective_minutes=60,
        tier="H2",
        price=Decimal("69.00"),
        parts_breakdown=[{"name": "bracket", "cost": "25.00"}],
    )


class TestSchema:
    def test_version_recorded(self, store):
        with store.reader() as session:
            row = session.conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        assert row[0] == SCHEMA_VERSION

    def test_table_allowlist(self):
        assert validate_table_name("jobs") == "jobs"
        with pytest.raises(ValueError, match="Invalid table name"):
            validate_table_name("jobs; DROP TABLE jobs")

    def test_reopening_is_idempotent(self, store):
        from homeflow.storage.sqlite import SQLiteStore

        again = SQLiteStore(store.db_path)
        assert again.list_jobs() == []


class TestRoundTrips:
    """Every model comes back with the same types it went in with."""

    def test_job(self, store):
        with store.transaction() as session:
            session.insert_job(make_job())
        job = store.get_job("job-1")
        assert job.fixed_price == Decimal("69")
        assert job.declined_provider_ids == ["p-x"]
        assert job.is_asap is True
        assert job.scheduled_at == START
        assert job.issue_evidence == []

    def test_visit(self, store):
        with store.transaction() as session:
            session.insert_job(make_job())
            session.insert_visit(make_visit())
        visit = store.get_visit("v1")
        assert visit.addon_item_ids == ["wall_hole_fill"]
        assert visit.parts_breakdown == [{"name": "bracket", "cost": "25.00"}]
        assert visit.price == Decimal("69.00")

    def test_scope_summary_is_write_once(self, store):
        summary = ScopeSummary(
            visit_id="v1",
            job_id="job-1",
            tier="H2",
            price=Decimal("69"),
            effective_minutes=45,
            answers={"wall_type": "Brick or block"},
        )
        with store.transaction() as session:
            session.insert_job(make_job())
            session.insert_visit(make_visit())
            session.insert_scope_summary(summary)
        assert store.get_scope_summary("v1").answers == {"wall_type": "Brick or block"}

        with pytest.raises(ConflictError, match="already has a scope summary"):
            with store.transaction() as session:
                session.insert_scope_summary(summary)

    def test_review_upsert_replaces(self, store):
        with store.transaction() as session:
            session.insert_job(make_job())
            session.upsert_review(Review("job-1", "CUSTOMER", "cust-1", 2))
            session.upsert_review(Review("job-1", "CUSTOMER", "cust-1", 5, "great"))
        reviews = store.list_reviews("job-1")
        assert len(reviews) == 1
        assert reviews[0].rating == 5

    def test_provider_upsert_and_online_toggle(self, store):
        store.save_provider(Provider(id="p1", name="P", capabilities=["HANDYMAN"]))
        assert store.list_providers(available_only=True) == []
        with store.transaction() as session:
            assert session.set_provider_online("p1", True) == 1
            assert session.set_provider_online("ghost", True) == 0
        assert [p.id for p in store.list_providers(available_only=True)] == ["p1"]
        assert store.get_provider("p1").capabilities == ["HANDYMAN"]

    def test_transactions_complete_pending_only(self, store):
        with store.transaction() as session:
            session.insert_job(make_job())
            session.insert_transaction(
                Transaction(id="t1", job_id="job-1", type="PAYOUT", amount=Decimal("10"))
            )
            session.insert_transaction(
                Transaction(id="t2", job_id="job-1", type="CHARGE", amount=Decimal("10"))
            )
            assert session.complete_transactions("job-1", "PAYOUT") == 1
            assert session.complete_transactions("job-1", "PAYOUT") == 0
        statuses = {t.id: t.status for t in store.list_transactions("job-1")}
        assert statuses == {"t1": "COMPLETED", "t2": "PENDING"}


class TestConditionalUpdates:
    def test_expect_match(self, store):
        with store.transaction() as session:
            session.insert_job(make_job())
            rows = session.update_job_fields(
                "job-1", {"provider_id": "p1"}, expect={"provider_id": None}
            )
        assert rows == 1
        assert store.get_job("job-1").provider_id == "p1"

    def test_expect_mismatch_changes_nothing(self, store):
        with store.transaction() as session:
            session.insert_job(make_job(provider_id="p1"))
            rows = session.update_job_fields(
                "job-1", {"provider_id": "p2"}, expect={"provider_id": None}
            )
        assert rows == 0
        assert store.get_job("job-1").provider_id == "p1"

    def test_unknown_column_rejected(self, store):
        with pytest.raises(ValueError, match="Unknown jobs columns"):
            with store.transaction() as session:
                session.update_job_fields("job-1", {"colour": "red"})

    def test_list_jobs_by_status(self, store):
        with store.transaction() as session:
            session.insert_job(make_job("a"))
            session.insert_job(make_job("b", status="BOOKED"))
        assert [j.id for j in store.list_jobs(statuses=["BOOKED"])] == ["b"]
        assert store.list_jobs(statuses=[]) == []


class TestTransactionRollback:
    """A failed unit leaves nothing behind."""

    def test_homeflow_error_rolls_back(self, store):
        with pytest.raises(ValidationError):
            with store.transaction() as session:
                session.insert_job(make_job())
                raise ValidationError("boom")
        assert store.get_job("job-1") is None

    def test_sqlite_error_becomes_internal_error(self, store):
        with store.transaction() as session:
            session.insert_job(make_job())
        with pytest.raises(InternalError, match="Storage error"):
            with store.transaction() as session:
                session.insert_visit(make_visit("v9"))
                session.insert_job(make_job())
        assert store.get_visit("v9") is None

    def test_other_errors_propagate_unchanged(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction() as session:
                session.insert_job(make_job())
                raise RuntimeError("unexpected")
        assert store.get_job("job-1") is None

    def test_internal_error_wraps_sqlite(self, store):
        with pytest.raises(InternalError) as exc_info:
            with store.transaction() as session:
                session.conn.execute("SELECT * FROM no_such_table")
        assert isinstance(exc_info.value.__cause__, sqlite3.Error)
