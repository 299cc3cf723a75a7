"""Tests for profiles and the completion stats relay."""

import pytest
from factories import APPRENTICE_ID, CLIENT_ID, job_fields

from craftiva.config import MarketplaceConfig
from craftiva.errors import ProfileNotFoundError, StateConflictError, ValidationError
from craftiva.jobs.models import ProfileStatsUpdate
from craftiva.jobs.service import JobService
from craftiva.profiles import InMemoryProfileStore, Profile, ProfileStatsRelay


class FlakyProfileStore(InMemoryProfileStore):
    """Profile store whose credits fail until ``healthy`` is set."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.healthy = False

    def apply_completion_credit(self, update):
        if not self.healthy:
            raise ConnectionError("profiles unavailable")
        return super().apply_completion_credit(update)


def finish_job(service):
    job = service.create_job_request(client_id=CLIENT_ID, **job_fields())
    app = service.submit_application(job.id, APPRENTICE_ID, "On it")
    service.accept_application(app.id, CLIENT_ID)
    return service.complete_job(job.id, CLIENT_ID, earnings=80)


class TestProfile:
    def test_negative_aggregates_rejected(self):
        with pytest.raises(ValueError):
            Profile(id="p", total_earnings=-1)

    def test_from_dict_treats_null_as_zero(self):
        profile = Profile.from_dict({"id": "p", "total_earnings": None, "completed_jobs": None})
        assert profile.total_earnings == 0
        assert profile.completed_jobs == 0


class TestInMemoryProfileStore:
    def test_credit_is_idempotent_per_update(self):
        store = InMemoryProfileStore()
        store.add_profile(APPRENTICE_ID)
        update = ProfileStatsUpdate(id="u-1", job_request_id="j", profile_id=APPRENTICE_ID, earnings=50)

        store.apply_completion_credit(update)
        profile = store.apply_completion_credit(update)

        assert profile.completed_jobs == 1
        assert profile.total_earnings == 50

    def test_credit_for_unknown_profile(self):
        update = ProfileStatsUpdate(id="u-1", job_request_id="j", profile_id="ghost", earnings=50)
        with pytest.raises(ProfileNotFoundError):
            InMemoryProfileStore().apply_completion_credit(update)

    def test_reads_return_copies(self):
        store = InMemoryProfileStore([Profile(id="p")])
        store.get_profile("p").completed_jobs = 9
        assert store.get_profile("p").completed_jobs == 0

    def test_auto_create(self):
        store = InMemoryProfileStore(auto_create=True)
        assert store.get_profile("new").completed_jobs == 0
        assert InMemoryProfileStore().get_profile("new") is None

    def test_delete_profile_cascades(self, storage, service, profiles):
        job = service.create_job_request(client_id=CLIENT_ID, **job_fields())
        service.submit_application(job.id, APPRENTICE_ID, "On it")

        assert profiles.delete_profile(CLIENT_ID, job_storage=storage) is True

        assert storage.get_job(job.id) is None
        assert storage.list_applications(apprentice_id=APPRENTICE_ID) == []
        assert profiles.get_profile(CLIENT_ID) is None

    def test_delete_assigned_apprentice_blocked(self, storage, profiles, in_progress_job):
        with pytest.raises(StateConflictError):
            profiles.delete_profile(APPRENTICE_ID, job_storage=storage)
        assert profiles.get_profile(APPRENTICE_ID) is not None


class TestRelay:
    def test_failed_credit_stays_pending(self, storage):
        profiles = FlakyProfileStore()
        for profile_id in (CLIENT_ID, APPRENTICE_ID):
            profiles.add_profile(profile_id)
        service = JobService(storage, profiles=profiles)

        job = finish_job(service)

        assert job.status == "completed"
        (pending,) = storage.list_pending_stats_updates()
        assert pending.attempts == 1
        assert "profiles unavailable" in pending.last_error
        assert profiles.get_profile(APPRENTICE_ID).completed_jobs == 0

    def test_flush_retries_pending_credit(self, storage):
        profiles = FlakyProfileStore()
        for profile_id in (CLIENT_ID, APPRENTICE_ID):
            profiles.add_profile(profile_id)
        service = JobService(storage, profiles=profiles)
        finish_job(service)

        assert service.flush_profile_stats() == {"applied": 0, "failed": 1}
        profiles.healthy = True
        assert service.flush_profile_stats() == {"applied": 1, "failed": 0}

        assert storage.list_pending_stats_updates() == []
        profile = profiles.get_profile(APPRENTICE_ID)
        assert profile.completed_jobs == 1
        assert profile.total_earnings == 80

    def test_deferred_relay(self, storage, profiles):
        service = JobService(storage, config=MarketplaceConfig(relay_on_complete=False), profiles=profiles)
        finish_job(service)

        assert profiles.get_profile(APPRENTICE_ID).completed_jobs == 0
        assert service.flush_profile_stats()["applied"] == 1
        assert profiles.get_profile(APPRENTICE_ID).completed_jobs == 1

    def test_relay_skips_applied_update(self, storage, profiles):
        relay = ProfileStatsRelay(storage, profiles)
        update = ProfileStatsUpdate(id="u-1", job_request_id="j", profile_id=APPRENTICE_ID, earnings=10)
        assert relay.relay(update) is True
        assert relay.relay(update) is True
        assert update.attempts == 1

    def test_earnings_outside_budget(self, service, in_progress_job):
        with pytest.raises(ValidationError, match="within the budget"):
            service.complete_job(in_progress_job.id, CLIENT_ID, earnings=500)

    def test_flush_without_profile_store(self, storage):
        with pytest.raises(RuntimeError):
            JobService(storage).flush_profile_stats()
