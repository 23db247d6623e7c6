"""
Pytest fixtures and test configuration for homeflow tests.
"""

from decimal import Decimal
from typing import Iterable, Optional

import pytest

from flow_helpers import FAR_PROVIDER, PROVIDER, FakeClock, JobDriver
from homeflow.catalogue.models import PricingTier
from homeflow.catalogue.source import JsonCatalogue
from homeflow.config import HomeflowConfig
from homeflow.evidence import LocalEvidenceStore
from homeflow.jobs.models import Provider, ProviderType
from homeflow.storage.sqlite import SQLiteStore
from homeflow.workflow import JobWorkflow


@pytest.fixture(autouse=True)
def homeflow_home(tmp_path, monkeypatch):
    """Keep job-event logs inside the test's temp directory."""
    home = tmp_path / "home"
    monkeypatch.setenv("HOMEFLOW_DATA_DIR", str(home))
    return home


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(tmp_path / "homeflow.db")


@pytest.fixture
def catalogue():
    return JsonCatalogue.default()


@pytest.fixture
def standard_tiers():
    return [
        PricingTier(tier="H1", ladder="STANDARD", max_minutes=30, price=Decimal("44")),
        PricingTier(tier="H2", ladder="STANDARD", max_minutes=60, price=Decimal("69")),
        PricingTier(tier="H3", ladder="STANDARD", max_minutes=120, price=Decimal("99")),
    ]


@pytest.fixture
def two_ladder_catalogue():
    """A small catalogue where one request splits into a £60 and a £90 visit."""
    return JsonCatalogue.from_dict(
        {
            "tiers": [
                {"tier": "H1", "ladder": "STANDARD", "max_minutes": 60, "price": "60"},
                {"tier": "H2", "ladder": "STANDARD", "max_minutes": 120, "price": "80"},
                {"tier": "P1", "ladder": "SPECIALIST", "max_minutes": 60, "price": "90"},
                {"tier": "P2", "ladder": "SPECIALIST", "max_minutes": 120, "price": "130"},
            ],
            "items": [
                {
                    "job_item_id": "shelf_fit",
                    "capability_tag": "HANDYMAN",
                    "default_minutes": 45,
                    "pricing_ladder": "STANDARD",
                },
                {
                    "job_item_id": "tap_swap",
                    "capability_tag": "PLUMBING",
                    "default_minutes": 40,
                    "pricing_ladder": "SPECIALIST",
                },
            ],
        }
    )


@pytest.fixture
def config():
    return HomeflowConfig()


@pytest.fixture
def evidence(tmp_path):
    return LocalEvidenceStore(tmp_path / "evidence", secret="test-only-evidence-secret")


@pytest.fixture
def workflow(store, catalogue, evidence, config, clock):
    return JobWorkflow(store, catalogue=catalogue, evidence=evidence, config=config, clock=clock)


@pytest.fixture
def add_provider(store):
    """Factory that saves a provider (online by default) and returns its id."""

    def _add(
        provider_id: str,
        capabilities: Iterable[str] = ("HANDYMAN",),
        categories: Iterable[str] = (),
        provider_type: ProviderType = ProviderType.GENERALIST,
        latitude: Optional[float] = 51.5074,
        longitude: Optional[float] = -0.1278,
        is_online: bool = True,
        **overrides,
    ) -> str:
        store.save_provider(
            Provider(
                id=provider_id,
                name=provider_id.replace("-", " ").title(),
                provider_type=provider_type,
                is_online=is_online,
                capabilities=list(capabilities),
                categories=list(categories),
                latitude=latitude,
                longitude=longitude,
                **overrides,
            )
        )
        return provider_id

    return _add


@pytest.fixture
def providers(add_provider):
    """Two HANDYMAN generalists; ``prov-near`` is closer to central London."""
    add_provider(PROVIDER.id, latitude=51.5080, longitude=-0.1280)
    add_provider(FAR_PROVIDER.id, latitude=51.7520, longitude=-1.2577)
    return [PROVIDER.id, FAR_PROVIDER.id]


@pytest.fixture
def driver(workflow, clock, providers):
    return JobDriver(workflow, clock)
