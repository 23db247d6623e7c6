"""Tests for execution progress, cancellation, reviews and closing."""

from datetime import timedelta
from decimal import Decimal

import pytest

from flow_helpers import (
    ADMIN,
    CERTAIN_TV_ANSWERS,
    CUSTOMER,
    FAR_PROVIDER,
    OTHER_CUSTOMER,
    PHOTO,
    PROVIDER,
)
from homeflow.errors import (
    AuthorizationError,
    InvalidTransitionError,
    JobNotFoundError,
    ValidationError,
)
from homeflow.jobs.models import JobStatus


class TestChangeStatus:
    """Provider-driven progress steps."""

    def test_progress_to_completion(self, driver, workflow, clock):
        job_id = driver.in_progress()
        job = workflow.store.get_job(job_id)
        assert job.status == "IN_PROGRESS"
        assert job.timer_started_at == clock.now

        clock.advance(minutes=40)
        job = workflow.change_status(job_id, "completed", PROVIDER)
        assert job.status == "COMPLETED"
        assert job.completed_at == clock.now
        assert job.elapsed_work_seconds(clock.now + timedelta(hours=2)) == 40 * 60
        assert {v.status for v in workflow.store.list_visits(job_id)} == {"COMPLETED"}

    def test_cannot_skip_steps(self, driver, workflow):
        job_id = driver.assigned()
        with pytest.raises(InvalidTransitionError):
            workflow.change_status(job_id, JobStatus.IN_PROGRESS.value, PROVIDER)
        assert workflow.store.get_job(job_id).status == "ASSIGNED"

    def test_only_assigned_provider(self, driver, workflow):
        job_id = driver.assigned()
        with pytest.raises(AuthorizationError):
            workflow.change_status(job_id, "ARRIVING", FAR_PROVIDER)
        with pytest.raises(AuthorizationError):
            workflow.change_status(job_id, "ARRIVING", CUSTOMER)

    def test_admin_may_progress(self, driver, workflow):
        job_id = driver.assigned()
        assert workflow.change_status(job_id, "ARRIVING", ADMIN).status == "ARRIVING"

    def test_unknown_status(self, driver, workflow):
        job_id = driver.assigned()
        with pytest.raises(ValidationError, match="Unknown status"):
            workflow.change_status(job_id, "TELEPORTING", PROVIDER)

    def test_dedicated_operations_are_not_bypassed(self, driver, workflow):
        job_id = driver.in_progress()
        with pytest.raises(ValidationError, match="dedicated operation"):
            workflow.change_status(job_id, "FLAGGED_REVIEW", PROVIDER)

    def test_cancel_is_delegated(self, driver, workflow):
        quote = driver.quote()
        job = workflow.change_status(
            quote.job.id, "CANCELLED_FREE", CUSTOMER, extra={"reason": "Changed my mind"}
        )
        assert job.status == "CANCELLED_FREE"
        assert job.cancellation_reason == "Changed my mind"

    def test_unknown_job(self, workflow):
        with pytest.raises(JobNotFoundError):
            workflow.change_status("missing", "ARRIVING", PROVIDER)

    def test_preauthorised_job_can_start(self, driver, workflow):
        job_id = driver.assigned()
        workflow.preauthorise(job_id, CUSTOMER)
        assert workflow.change_status(job_id, "ARRIVING", PROVIDER).status == "ARRIVING"


class TestCancelJob:
    """Cancellation fees depend on how far the job got."""

    def test_free_before_assignment(self, driver, workflow):
        job_id = driver.locked()
        job = workflow.cancel_job(job_id, CUSTOMER, reason="No longer needed")
        assert job.status == "CANCELLED_FREE"
        assert job.cancellation_fee is None
        assert job.cancelled_by_role == "CUSTOMER"
        assert job.offered_to_id is None
        assert workflow.store.list_transactions(job_id) == []
        assert {v.status for v in workflow.store.list_visits(job_id)} == {"CANCELLED"}

    def test_charged_after_assignment(self, driver, workflow):
        job_id = driver.assigned()
        job = workflow.cancel_job(job_id, CUSTOMER)
        assert job.status == "CANCELLED_CHARGED"
        assert job.cancellation_fee == Decimal("13.80")

        ledger = {t.type: t for t in workflow.store.list_transactions(job_id)}
        assert ledger["CHARGE"].amount == Decimal("13.80")
        assert ledger["CHARGE"].user_id == CUSTOMER.id
        assert ledger["PAYOUT"].amount == Decimal("6.90")
        assert ledger["PAYOUT"].user_id == PROVIDER.id

    def test_admin_can_waive_fee(self, driver, workflow):
        job_id = driver.in_progress()
        job = workflow.cancel_job(job_id, ADMIN, reason="Provider no-show", waive_fee=True)
        assert job.status == "CANCELLED_FREE"
        assert workflow.store.list_transactions(job_id) == []

    def test_customer_cannot_waive_fee(self, driver, workflow):
        job_id = driver.assigned()
        assert workflow.cancel_job(job_id, CUSTOMER, waive_fee=True).status == "CANCELLED_CHARGED"

    def test_customer_cannot_cancel_completed_job(self, driver, workflow):
        job_id = driver.completed()
        with pytest.raises(InvalidTransitionError, match="finished"):
            workflow.cancel_job(job_id, CUSTOMER)

    def test_admin_can_cancel_after_completion(self, driver, workflow):
        job_id = driver.completed()
        assert workflow.cancel_job(job_id, ADMIN).status == "CANCELLED_FREE"

    def test_cancelled_job_is_terminal(self, driver, workflow):
        quote = driver.quote()
        workflow.cancel_job(quote.job.id, CUSTOMER)
        with pytest.raises(InvalidTransitionError):
            workflow.cancel_job(quote.job.id, ADMIN)

    def test_other_customer_cannot_cancel(self, driver, workflow):
        quote = driver.quote()
        with pytest.raises(AuthorizationError):
            workflow.cancel_job(quote.job.id, OTHER_CUSTOMER)

    def test_providers_cannot_cancel(self, driver, workflow):
        job_id = driver.assigned()
        with pytest.raises(AuthorizationError):
            workflow.cancel_job(job_id, PROVIDER)


class TestReviewsAndClosing:
    def test_customer_review_after_completion(self, driver, workflow):
        job_id = driver.completed()
        review = workflow.submit_review(job_id, CUSTOMER, 5, "Spot on")
        assert (review.kind, review.rating, review.comment) == ("CUSTOMER", 5, "Spot on")

    def test_review_resubmission_replaces(self, driver, workflow):
        job_id = driver.completed()
        workflow.submit_review(job_id, CUSTOMER, 2)
        workflow.submit_review(job_id, CUSTOMER, 4)
        reviews = workflow.store.list_reviews(job_id)
        assert [(r.kind, r.rating) for r in reviews] == [("CUSTOMER", 4)]

    def test_review_before_completion_rejected(self, driver, workflow):
        job_id = driver.in_progress()
        with pytest.raises(InvalidTransitionError):
            workflow.submit_review(job_id, CUSTOMER, 5)

    def test_rating_out_of_range(self, driver, workflow):
        job_id = driver.completed()
        with pytest.raises(ValidationError, match="between 1 and 5"):
            workflow.submit_review(job_id, CUSTOMER, 9)

    def test_providers_cannot_review(self, driver, workflow):
        job_id = driver.completed()
        with pytest.raises(AuthorizationError):
            workflow.submit_review(job_id, PROVIDER, 5)

    def test_close_requires_both_reviews(self, driver, workflow):
        job_id = driver.completed()
        workflow.capture_payment(job_id, CUSTOMER)
        workflow.payout(job_id, ADMIN)
        workflow.submit_review(job_id, CUSTOMER, 5)
        with pytest.raises(ValidationError, match="missing: ADMIN"):
            workflow.close_job(job_id, ADMIN)

        workflow.submit_review(job_id, ADMIN, 4, "Clean job")
        job = workflow.close_job(job_id, ADMIN)
        assert job.status == "CLOSED"
        assert job.closed_at is not None
        assert job.is_terminal

    def test_only_admins_close(self, driver, workflow):
        job_id = driver.completed()
        with pytest.raises(AuthorizationError):
            workflow.close_job(job_id, CUSTOMER)

    def test_close_must_follow_payout(self, driver, workflow):
        job_id = driver.completed()
        workflow.submit_review(job_id, CUSTOMER, 5)
        workflow.submit_review(job_id, ADMIN, 5)
        with pytest.raises(InvalidTransitionError):
            workflow.close_job(job_id, ADMIN)


class TestGetJob:
    def test_parties_can_read(self, driver, workflow):
        job_id = driver.assigned()
        for actor in (CUSTOMER, PROVIDER, ADMIN):
            job, visits = workflow.get_job(job_id, actor)
            assert job.id == job_id
            assert len(visits) == 1

    def test_offeree_can_read(self, driver, workflow):
        job_id = driver.locked()
        job, _ = workflow.get_job(job_id, PROVIDER)
        assert job.offered_to_id == PROVIDER.id

    def test_outsiders_cannot_read(self, driver, workflow):
        job_id = driver.assigned()
        for actor in (OTHER_CUSTOMER, FAR_PROVIDER):
            with pytest.raises(AuthorizationError):
                workflow.get_job(job_id, actor)


class TestEvidenceUrls:
    def test_grouped_signed_urls(self, driver, workflow):
        quote = driver.quote()
        visit_id = quote.visits[0].id
        workflow.lock_visit_scope(visit_id, CUSTOMER, answers=CERTAIN_TV_ANSWERS, photos=[PHOTO])
        workflow.accept_job(quote.job.id, PROVIDER)
        workflow.flag_job(quote.job.id, PROVIDER, "photo_mismatch", photos=[PHOTO, PHOTO])

        urls = workflow.evidence_urls(quote.job.id, ADMIN)
        assert {k: len(v) for k, v in urls.items()} == {
            "scope": 1,
            "parts": 0,
            "mismatch": 0,
            "flag": 2,
            "issue": 0,
        }
        key = workflow.store.get_scope_summary(visit_id).photo_keys[0]
        assert workflow.evidence.verify_url(urls["scope"][0]) == key

    def test_parties_only(self, driver, workflow):
        job_id = driver.assigned()
        with pytest.raises(AuthorizationError):
            workflow.evidence_urls(job_id, OTHER_CUSTOMER)
