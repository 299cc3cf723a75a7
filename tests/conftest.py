"""
Pytest fixtures and test configuration for Craftiva tests.
"""

import pytest
from factories import APPRENTICE_ID, CLIENT_ID, OTHER_APPRENTICE_ID, OUTSIDER_ID, job_fields

from craftiva.config import MarketplaceConfig
from craftiva.jobs.service import JobService
from craftiva.jobs.storage import InMemoryJobStorage
from craftiva.marketplace import Marketplace
from craftiva.policy import Actor
from craftiva.profiles import InMemoryProfileStore


@pytest.fixture
def storage():
    """Create in-memory storage for testing."""
    return InMemoryJobStorage()


@pytest.fixture
def profiles():
    """Profile store holding the client and the apprentices."""
    store = InMemoryProfileStore()
    for profile_id in (CLIENT_ID, APPRENTICE_ID, OTHER_APPRENTICE_ID, OUTSIDER_ID):
        store.add_profile(profile_id)
    return store


@pytest.fixture
def config():
    """Create test configuration."""
    return MarketplaceConfig()


@pytest.fixture
def service(storage, config, profiles):
    """Create job service for testing."""
    return JobService(storage=storage, config=config, profiles=profiles)


@pytest.fixture
def marketplace(storage, config, profiles, service):
    """Policy-checked marketplace sharing the service's storage."""
    return Marketplace(storage, config=config, profiles=profiles, service=service)


@pytest.fixture
def client_actor():
    return Actor(CLIENT_ID)


@pytest.fixture
def apprentice_actor():
    return Actor(APPRENTICE_ID)


@pytest.fixture
def other_apprentice_actor():
    return Actor(OTHER_APPRENTICE_ID)


@pytest.fixture
def outsider_actor():
    return Actor(OUTSIDER_ID)


@pytest.fixture
def open_job(service):
    """An open job request posted by the client."""
    return service.create_job_request(client_id=CLIENT_ID, **job_fields())


@pytest.fixture
def in_progress_job(service, open_job):
    """A job with APPRENTICE_ID accepted and assigned."""
    application = service.submit_application(open_job.id, APPRENTICE_ID, "I can fix it today.")
    _, job = service.accept_application(application.id, CLIENT_ID)
    return job
