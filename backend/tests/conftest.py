"""Pytest configuration and fixtures."""

import os
import secrets

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from app.auth import create_access_token  # noqa: E402
from app.config import get_settings  # noqa: E402
from app.database import reset_marketplace  # noqa: E402
from app.main import app  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from actors import APPRENTICE_ID, CLIENT_ID, OTHER_APPRENTICE_ID, OUTSIDER_ID  # noqa: E402


def bearer(actor_id: str) -> dict:
    token = create_access_token(actor_id, get_settings())
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(autouse=True)
def fresh_marketplace():
    """Every test starts from an empty in-memory marketplace."""
    reset_marketplace()
    yield
    reset_marketplace()


@pytest.fixture
def client():
    """Create a test client."""
    return TestClient(app)


@pytest.fixture
def client_headers():
    return bearer(CLIENT_ID)


@pytest.fixture
def apprentice_headers():
    return bearer(APPRENTICE_ID)


@pytest.fixture
def other_apprentice_headers():
    return bearer(OTHER_APPRENTICE_ID)


@pytest.fixture
def outsider_headers():
    return bearer(OUTSIDER_ID)


@pytest.fixture
def job_payload():
    from datetime import date, timedelta

    return {
        "title": "Tile the bathroom floor",
        "description": "Roughly 6 square metres, tiles already bought.",
        "budget_min": 150,
        "budget_max": 250,
        "deadline": (date.today() + timedelta(days=21)).isoformat(),
        "skills_required": ["Tiling"],
        "location": "Abuja",
    }


@pytest.fixture
def open_job(client, client_headers, job_payload):
    response = client.post("/api/v1/jobs", json=job_payload, headers=client_headers)
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def application(client, apprentice_headers, open_job):
    response = client.post(
        f"/api/v1/jobs/{open_job['id']}/applications",
        json={"proposal": "Done this many times, can start Monday."},
        headers=apprentice_headers,
    )
    assert response.status_code == 201
    return response.json()
