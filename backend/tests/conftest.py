"""Pytest configuration and fixtures."""

import os
import secrets
import tempfile

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="homeflow-backend-tests-")

# Settings and the limiter are read at import time, so set these first
os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)
os.environ.setdefault("DATABASE_PATH", os.path.join(_TEST_DATA_DIR, "homeflow.db"))
os.environ.setdefault("EVIDENCE_DIR", os.path.join(_TEST_DATA_DIR, "evidence"))
os.environ.setdefault("EVIDENCE_SECRET", "test-only-evidence-secret")
os.environ.setdefault("MAINTENANCE_TOKEN", "test-only-maintenance-token")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from app.config import get_settings  # noqa: E402
from app.database import get_workflow  # noqa: E402
from app.main import app  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from homeflow.evidence import LocalEvidenceStore  # noqa: E402
from homeflow.jobs.models import Provider, ProviderType  # noqa: E402
from homeflow.storage.sqlite import SQLiteStore  # noqa: E402
from homeflow.workflow import JobWorkflow  # noqa: E402

from api_helpers import PHOTO_B64, TV_ANSWERS, bearer  # noqa: E402


@pytest.fixture
def workflow(tmp_path, monkeypatch):
    """A fresh workflow on a temp database with two nearby handymen."""
    monkeypatch.setenv("HOMEFLOW_DATA_DIR", str(tmp_path / "home"))
    store = SQLiteStore(tmp_path / "homeflow.db")
    for provider_id, lat, lon in (
        ("prov-near", 51.5080, -0.1280),
        ("prov-far", 51.7520, -1.2577),
    ):
        store.save_provider(
            Provider(
                id=provider_id,
                name=provider_id,
                provider_type=ProviderType.GENERALIST,
                is_online=True,
                capabilities=["HANDYMAN"],
                latitude=lat,
                longitude=lon,
            )
        )
    evidence = LocalEvidenceStore(tmp_path / "evidence", secret=get_settings().evidence_secret)
    return JobWorkflow(store, evidence=evidence)


@pytest.fixture
def client(workflow, monkeypatch):
    """Create a test client wired to the temp workflow."""
    app.dependency_overrides[get_workflow] = lambda: workflow
    monkeypatch.setattr("app.main.get_workflow", lambda: workflow)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def customer_headers():
    return bearer("cust-1", "CUSTOMER")


@pytest.fixture
def other_customer_headers():
    return bearer("cust-2", "CUSTOMER")


@pytest.fixture
def near_headers():
    return bearer("prov-near", "PROVIDER")


@pytest.fixture
def far_headers():
    return bearer("prov-far", "PROVIDER")


@pytest.fixture
def admin_headers():
    return bearer("admin-1", "ADMIN")


@pytest.fixture
def maintenance_headers():
    return {"X-Maintenance-Token": get_settings().maintenance_token}


@pytest.fixture
def quoted(client, customer_headers):
    """An ASAP TV-mount job in PRICED; returns the quote payload."""
    response = client.post(
        "/jobs",
        json={
            "description": "Mount the TV in the living room",
            "item_ids": ["tv_mount_standard"],
            "location": "1 High Street, London",
            "is_asap": True,
            "latitude": 51.5074,
            "longitude": -0.1278,
        },
        headers=customer_headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def offered(client, quoted, customer_headers):
    """The quoted job after scope lock, offered to prov-near. Returns (job_id, visit_id)."""
    visit_id = quoted["visits"][0]["id"]
    response = client.post(
        f"/visits/{visit_id}/scope-lock",
        json={"answers": TV_ANSWERS, "photos": [PHOTO_B64]},
        headers=customer_headers,
    )
    assert response.status_code == 200, response.text
    return quoted["job"]["id"], visit_id


@pytest.fixture
def working(client, offered, near_headers):
    """The offered job accepted by prov-near and IN_PROGRESS."""
    job_id, visit_id = offered
    assert client.post(f"/jobs/{job_id}/accept", headers=near_headers).status_code == 200
    for step in ("ARRIVING", "ON_SITE", "IN_PROGRESS"):
        response = client.post(f"/jobs/{job_id}/status", json={"status": step}, headers=near_headers)
        assert response.status_code == 200, response.text
    return job_id, visit_id
