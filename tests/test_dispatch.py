"""Tests for provider matching, the offer engine and dispatch sweeps."""

import threading
from datetime import timedelta

import pytest

from flow_helpers import CERTAIN_TV_ANSWERS, CUSTOMER, FAR_PROVIDER, PROVIDER
from homeflow.dispatch.matcher import (
    find_eligible_providers,
    haversine_km,
    match_reason,
    required_capabilities,
)
from homeflow.errors import ConflictError, JobNotFoundError
from homeflow.jobs.models import Job, Provider, ProviderType, Visit


def provider(
    pid, caps=("HANDYMAN",), cats=(), kind="GENERALIST", lat=None, lon=None, is_online=True, **kw
):
    return Provider(
        id=pid,
        name=pid,
        provider_type=kind,
        is_online=is_online,
        capabilities=list(caps),
        categories=list(cats),
        latitude=lat,
        longitude=lon,
        **kw,
    )


class TestMatcher:
    """Pure eligibility rules."""

    def test_haversine_london_oxford(self):
        assert 75 < haversine_km(51.5074, -0.1278, 51.7520, -1.2577) < 90

    def test_required_capabilities_skip_cancelled_visits(self, driver, workflow):
        quote = driver.quote(items=["tv_mount_standard", "tap_leak_fix"])
        visits = workflow.store.list_visits(quote.job.id)
        assert required_capabilities(visits) == ["HANDYMAN", "PLUMBING"]
        visits[1].status = "CANCELLED"
        assert required_capabilities(visits) == ["HANDYMAN"]

    def test_match_reasons(self):
        assert match_reason(provider("a", ["HANDYMAN", "PLUMBING"]), ["HANDYMAN"], "HANDYMAN") == "capability"
        assert match_reason(provider("b", [], ["HANDYMAN"]), ["PLUMBING"], "HANDYMAN") == "category"
        assert match_reason(provider("c", []), [], "HANDYMAN") == "fallback"
        assert match_reason(provider("d", ["PLUMBING"]), ["HANDYMAN"], "HANDYMAN") is None

    def test_needs_every_capability(self):
        job = Job(id="j", customer_id="c", description="d")
        candidates = [provider("handy"), provider("both", ["HANDYMAN", "PLUMBING"])]
        visits = []
        for tag in ("HANDYMAN", "PLUMBING"):
            visits.append(
                Visit(
                    id=tag,
                    job_id="j",
                    capability_tag=tag,
                    primary_item_id="x",
                    pricing_ladder="STANDARD",
                    base_minutes=10,
                    effective_minutes=10,
                    tier="H1",
                    price=0,
                )
            )
        result = find_eligible_providers(job, visits, candidates)
        assert [c.provider_id for c in result] == ["both"]

    def test_generalists_before_specialists(self):
        job = Job(id="j", customer_id="c", description="d", category="HANDYMAN")
        result = find_eligible_providers(
            job, [], [provider("spec", [], ["HANDYMAN"], kind="SPECIALIST"), provider("gen", [])]
        )
        assert [c.provider_id for c in result] == ["gen"]

    def test_specialists_when_no_generalist(self):
        job = Job(id="j", customer_id="c", description="d", category="HANDYMAN")
        result = find_eligible_providers(
            job, [], [provider("spec", [], ["HANDYMAN"], kind=ProviderType.SPECIALIST)]
        )
        assert [c.provider_id for c in result] == ["spec"]

    def test_cleaning_is_specialist_only(self):
        job = Job(id="j", customer_id="c", description="d", category="CLEANING")
        result = find_eligible_providers(
            job,
            [],
            [
                provider("gen", [], ["CLEANING"]),
                provider("spec", [], ["CLEANING"], kind="SPECIALIST"),
            ],
        )
        assert [c.provider_id for c in result] == ["spec"]

    def test_ranked_by_distance_unknown_last(self):
        job = Job(id="j", customer_id="c", description="d", latitude=51.5, longitude=-0.12)
        result = find_eligible_providers(
            job,
            [],
            [
                provider("nowhere"),
                provider("far", lat=52.5, lon=-1.9),
                provider("near", lat=51.51, lon=-0.13),
            ],
        )
        assert [c.provider_id for c in result] == ["near", "far", "nowhere"]

    def test_excludes_declined_offline_and_suspended(self):
        job = Job(id="j", customer_id="c", description="d", declined_provider_ids=["declined"])
        result = find_eligible_providers(
            job,
            [],
            [
                provider("declined"),
                provider("offline", is_online=False),
                provider("suspended", status="SUSPENDED"),
                provider("ok"),
            ],
        )
        assert [c.provider_id for c in result] == ["ok"]


class TestDispatchEngine:
    """Sequential, time-boxed offers."""

    def test_first_offer_goes_to_nearest(self, driver, workflow):
        job_id = driver.locked()
        job = workflow.store.get_job(job_id)
        assert job.offered_to_id == PROVIDER.id
        assert job.offered_at is not None

    def test_live_offer_is_kept(self, driver, workflow, clock):
        job_id = driver.locked()
        clock.advance(seconds=9)
        assert workflow.dispatch.dispatch_job(job_id) == PROVIDER.id
        assert workflow.store.get_job(job_id).offered_at < clock.now

    def test_expired_offer_advances(self, driver, workflow, clock):
        job_id = driver.locked()
        clock.advance(seconds=10)
        assert workflow.dispatch.dispatch_job(job_id) == FAR_PROVIDER.id
        job = workflow.store.get_job(job_id)
        assert job.offered_at == clock.now

    def test_offers_rotate_back_to_start(self, driver, workflow, clock):
        job_id = driver.locked()
        clock.advance(seconds=11)
        workflow.dispatch.dispatch_job(job_id)
        clock.advance(seconds=11)
        assert workflow.dispatch.dispatch_job(job_id) == PROVIDER.id

    def test_force_advances_live_offer(self, driver, workflow):
        job_id = driver.locked()
        assert workflow.dispatch.dispatch_job(job_id, force=True) == FAR_PROVIDER.id

    def test_nobody_eligible_clears_pointer(self, driver, workflow, store, clock):
        job_id = driver.locked()
        with store.transaction() as session:
            session.set_provider_online(PROVIDER.id, False)
            session.set_provider_online(FAR_PROVIDER.id, False)
        clock.advance(seconds=30)
        assert workflow.dispatch.dispatch_job(job_id) is None
        job = workflow.store.get_job(job_id)
        assert job.status == "ASSIGNING"
        assert job.offered_to_id is None
        assert job.offered_at is None

    def test_not_dispatching_is_noop(self, driver, workflow):
        quote = driver.quote()
        assert workflow.dispatch.dispatch_job(quote.job.id) is None

    def test_unknown_job(self, workflow):
        with pytest.raises(JobNotFoundError):
            workflow.dispatch.dispatch_job("missing")

    def test_eligible_list(self, driver, workflow):
        job_id = driver.locked()
        eligible = workflow.dispatch.find_eligible_providers(job_id)
        assert [e.provider_id for e in eligible] == [PROVIDER.id, FAR_PROVIDER.id]
        assert eligible[0].distance_km < eligible[1].distance_km


class TestDispatchTracker:
    """Periodic sweeps."""

    def test_sweep_is_idempotent_with_live_offers(self, driver, workflow):
        job_id = driver.locked()
        before = workflow.store.get_job(job_id)
        result = workflow.run_dispatch_sweep()
        assert result == {"activated": [], "progressed": []}
        assert workflow.store.get_job(job_id).offered_at == before.offered_at

    def test_sweep_advances_expired_offer(self, driver, workflow, clock):
        job_id = driver.locked()
        clock.advance(seconds=15)
        progressed = workflow.run_dispatch_sweep()["progressed"]
        assert [(a.job_id, a.action, a.provider_id) for a in progressed] == [
            (job_id, "advanced", FAR_PROVIDER.id)
        ]

    def test_sweep_reports_no_providers(self, driver, workflow, store, clock):
        job_id = driver.locked()
        with store.transaction() as session:
            session.set_provider_online(PROVIDER.id, False)
            session.set_provider_online(FAR_PROVIDER.id, False)
        clock.advance(seconds=15)
        progressed = workflow.run_dispatch_sweep()["progressed"]
        assert [a.action for a in progressed] == ["no_providers"]

        with store.transaction() as session:
            session.set_provider_online(FAR_PROVIDER.id, True)
        progressed = workflow.run_dispatch_sweep()["progressed"]
        assert [(a.action, a.provider_id) for a in progressed] == [("started", FAR_PROVIDER.id)]

    def test_activation_when_window_opens(self, workflow, clock, providers):
        quote = workflow.create_job(
            CUSTOMER,
            "Mount TV",
            ["tv_mount_standard"],
            scheduled_at=clock.now + timedelta(hours=5),
            latitude=51.5074,
            longitude=-0.1278,
        )
        workflow.lock_visit_scope(quote.visits[0].id, CUSTOMER, answers=CERTAIN_TV_ANSWERS)
        assert workflow.run_dispatch_sweep()["activated"] == []

        clock.advance(hours=3, minutes=1)
        activated = workflow.run_dispatch_sweep()["activated"]
        assert [(a.action, a.provider_id) for a in activated] == [("activated", PROVIDER.id)]
        job = workflow.store.get_job(quote.job.id)
        assert job.status == "ASSIGNING"
        assert workflow.store.list_state_changes(job.id)[-1].actor_role == "SYSTEM"

    def test_unlocked_booked_job_is_not_activated(self, workflow, clock, providers):
        quote = workflow.create_job(
            CUSTOMER, "Mount TV", ["tv_mount_standard"], scheduled_at=clock.now + timedelta(hours=1)
        )
        workflow.book_job(quote.job.id, CUSTOMER)
        assert workflow.run_dispatch_sweep()["activated"] == []
        assert workflow.store.get_job(quote.job.id).status == "BOOKED"


class TestConcurrentAccept:
    """Exactly one of two simultaneous accepts wins."""

    def test_single_winner(self, driver, workflow, store):
        job_id = driver.locked()
        barrier = threading.Barrier(2)
        outcomes = []

        def accept():
            barrier.wait()
            try:
                workflow.accept_job(job_id, PROVIDER)
                outcomes.append("won")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=accept) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["conflict", "won"]
        job = store.get_job(job_id)
        assert job.status == "ASSIGNED"
        assert job.provider_id == PROVIDER.id
        assert [c.to_status for c in store.list_state_changes(job_id)].count("ASSIGNED") == 1
