"""Tests for the in-memory job storage."""

import uuid
from datetime import datetime, timezone

import pytest
from factories import APPRENTICE_ID, CLIENT_ID, OTHER_APPRENTICE_ID, future_deadline

from craftiva.errors import (
    DuplicateApplicationError,
    JobNotFoundError,
    JobNotOpenError,
    StateConflictError,
    WrongStateError,
)
from craftiva.jobs.models import (
    ApplicationStatus,
    JobApplication,
    JobRequest,
    JobStateTransition,
    JobStatus,
    ProfileStatsUpdate,
)
from craftiva.jobs.storage import InMemoryJobStorage, touch_updated_at


def new_job(client_id: str = CLIENT_ID, **overrides) -> JobRequest:
    fields = {
        "id": str(uuid.uuid4()),
        "client_id": client_id,
        "title": "Hang shelves",
        "description": "Three shelves in the hallway.",
        "budget_min": 20,
        "budget_max": 40,
        "deadline": future_deadline(),
    }
    fields.update(overrides)
    return JobRequest(**fields)


def new_application(job_id: str, apprentice_id: str = APPRENTICE_ID, **overrides) -> JobApplication:
    fields = {
        "id": str(uuid.uuid4()),
        "apprentice_id": apprentice_id,
        "job_request_id": job_id,
        "proposal": "I can do it.",
    }
    fields.update(overrides)
    return JobApplication(**fields)


class TestWriteHooks:
    """Tests for the updated_at hook."""

    def test_insert_stamps_both_timestamps(self, storage):
        job = new_job()
        storage.save_job(job)
        stored = storage.get_job(job.id)
        assert stored.created_at is not None
        assert stored.updated_at == stored.created_at

    def test_every_update_touches_updated_at(self, storage):
        job = new_job()
        storage.save_job(job)
        first = storage.get_job(job.id).updated_at

        job.title = "Hang four shelves"
        storage.update_job(job)

        assert storage.get_job(job.id).updated_at >= first

    def test_application_writes_touch_updated_at(self, storage):
        job = new_job()
        storage.save_job(job)
        app = new_application(job.id)
        storage.save_application(app)
        created = storage.get_application(app.id)

        created.status = ApplicationStatus.REJECTED.value
        storage.update_application(created)

        stored = storage.get_application(app.id)
        assert stored.updated_at >= created.created_at
        assert stored.created_at == created.created_at

    def test_custom_hooks_replace_default(self):
        seen = []
        storage = InMemoryJobStorage(write_hooks=[lambda record, now, created: seen.append(created)])
        job = new_job()
        storage.save_job(job)
        storage.update_job(job)
        assert seen == [True, False]
        assert storage.get_job(job.id).updated_at is None

    def test_touch_keeps_existing_created_at(self):
        job = new_job()
        first = datetime(2030, 1, 1, tzinfo=timezone.utc)
        later = datetime(2030, 1, 2, tzinfo=timezone.utc)

        touch_updated_at(job, first, created=True)
        touch_updated_at(job, later, created=False)

        assert job.created_at == first
        assert job.updated_at == later


class TestReadIsolation:
    def test_reads_return_copies(self, storage):
        job = new_job()
        storage.save_job(job)

        fetched = storage.get_job(job.id)
        fetched.status = JobStatus.CANCELLED.value

        assert storage.get_job(job.id).status == "open"


class TestCompareAndSwap:
    """Tests for conditional status writes."""

    def test_update_with_matching_status(self, storage):
        job = new_job()
        storage.save_job(job)
        job.status = JobStatus.CANCELLED.value
        assert storage.update_job(job, expected_status=JobStatus.OPEN) is True
        assert storage.get_job(job.id).status == "cancelled"

    def test_update_with_stale_status(self, storage):
        job = new_job()
        storage.save_job(job)
        job.status = JobStatus.CANCELLED.value
        storage.update_job(job)

        job.status = JobStatus.IN_PROGRESS.value
        job.assigned_apprentice_id = APPRENTICE_ID
        assert storage.update_job(job, expected_status=JobStatus.OPEN) is False
        assert storage.get_job(job.id).status == "cancelled"

    def test_update_missing_job(self, storage):
        assert storage.update_job(new_job()) is False

    def test_update_application_with_stale_status(self, storage):
        job = new_job()
        storage.save_job(job)
        app = new_application(job.id, status="rejected")
        storage.save_application(app)

        app.status = ApplicationStatus.ACCEPTED.value
        assert storage.update_application(app, expected_status=ApplicationStatus.PENDING) is False


class TestConstraints:
    """Tests for the emulated database constraints."""

    def test_duplicate_application(self, storage):
        job = new_job()
        storage.save_job(job)
        storage.save_application(new_application(job.id))
        with pytest.raises(DuplicateApplicationError):
            storage.save_application(new_application(job.id))

    def test_application_to_missing_job(self, storage):
        with pytest.raises(JobNotFoundError):
            storage.save_application(new_application("missing"))

    def test_single_accepted_application_per_job(self, storage):
        job = new_job()
        storage.save_job(job)
        first = new_application(job.id)
        second = new_application(job.id, apprentice_id=OTHER_APPRENTICE_ID)
        storage.save_application(first)
        storage.save_application(second)

        first.status = ApplicationStatus.ACCEPTED.value
        storage.update_application(first)

        second.status = ApplicationStatus.ACCEPTED.value
        with pytest.raises(StateConflictError, match="already has an accepted application"):
            storage.update_application(second)
        assert storage.get_application(second.id).status == "pending"

    def test_duplicate_job_id(self, storage):
        job = new_job()
        storage.save_job(job)
        with pytest.raises(StateConflictError):
            storage.save_job(job)

    def test_one_credit_per_job(self, storage):
        job = new_job()
        storage.save_job(job)
        storage.save_stats_update(
            ProfileStatsUpdate(id="u-1", job_request_id=job.id, profile_id=APPRENTICE_ID, earnings=40)
        )
        with pytest.raises(StateConflictError, match="already credited"):
            storage.save_stats_update(
                ProfileStatsUpdate(
                    id="u-2", job_request_id=job.id, profile_id=APPRENTICE_ID, earnings=40
                )
            )


class TestTransactions:
    """Tests for all-or-nothing transactions."""

    def test_rollback_on_exception(self, storage):
        job = new_job()
        storage.save_job(job)

        with pytest.raises(RuntimeError):
            with storage.transaction():
                job.status = JobStatus.CANCELLED.value
                storage.update_job(job)
                storage.save_application(new_application(job.id))
                raise RuntimeError("boom")

        assert storage.get_job(job.id).status == "open"
        assert storage.list_applications(job_request_id=job.id) == []

    def test_nested_transaction_joins_outer(self, storage):
        job = new_job()
        storage.save_job(job)

        with pytest.raises(RuntimeError):
            with storage.transaction():
                with storage.transaction():
                    job.status = JobStatus.CANCELLED.value
                    storage.update_job(job)
                raise RuntimeError("outer fails after inner finished")

        assert storage.get_job(job.id).status == "open"

    def test_commit(self, storage):
        job = new_job()
        with storage.transaction():
            storage.save_job(job)
        assert storage.get_job(job.id) is not None


def transition_for(job: JobRequest, from_status=None) -> JobStateTransition:
    return JobStateTransition(
        id=str(uuid.uuid4()),
        job_request_id=job.id,
        from_status=from_status,
        to_status=job.status,
        actor_id=CLIENT_ID,
    )


class FailingTransitionStorage(InMemoryJobStorage):
    """Storage whose audit log is unavailable."""

    def save_transition(self, transition):
        raise ConnectionError("audit log unavailable")


class TestLifecycleChanges:
    """Tests for the multi-row apply_* writes."""

    def open_job_with_applications(self, storage):
        job = new_job()
        storage.save_job(job)
        first = new_application(job.id)
        second = new_application(job.id, apprentice_id=OTHER_APPRENTICE_ID)
        storage.save_application(first)
        storage.save_application(second)
        return job, first, second

    def assign(self, job, application):
        job.status = JobStatus.IN_PROGRESS.value
        job.assigned_apprentice_id = application.apprentice_id
        application.status = ApplicationStatus.ACCEPTED.value

    def test_acceptance_rejects_siblings(self, storage):
        job, first, second = self.open_job_with_applications(storage)
        self.assign(job, first)
        transition = transition_for(job, "open")

        assert storage.apply_acceptance(job, first, transition) == 1

        assert storage.get_application(second.id).status == "rejected"
        assert storage.get_transitions(job.id)[-1].metadata["rejected_applications"] == 1

    def test_acceptance_with_stale_application_changes_nothing(self, storage):
        job, first, second = self.open_job_with_applications(storage)
        stale = storage.get_application(first.id)
        stale.status = ApplicationStatus.REJECTED.value
        storage.update_application(stale)
        self.assign(job, first)

        with pytest.raises(StateConflictError):
            storage.apply_acceptance(job, first, transition_for(job, "open"))

        stored = storage.get_job(job.id)
        assert stored.status == "open"
        assert stored.assigned_apprentice_id is None
        assert storage.get_application(second.id).status == "pending"
        assert storage.get_transitions(job.id) == []

    def test_acceptance_of_closed_job(self, storage):
        job, first, _ = self.open_job_with_applications(storage)
        closed = storage.get_job(job.id)
        closed.status = JobStatus.CANCELLED.value
        storage.update_job(closed)
        self.assign(job, first)

        with pytest.raises(JobNotOpenError):
            storage.apply_acceptance(job, first, transition_for(job, "open"))
        assert storage.get_application(first.id).status == "pending"

    def test_completion_with_existing_credit_changes_nothing(self, storage):
        job, first, _ = self.open_job_with_applications(storage)
        self.assign(job, first)
        storage.apply_acceptance(job, first, transition_for(job, "open"))
        storage.save_stats_update(
            ProfileStatsUpdate(id="u-0", job_request_id=job.id, profile_id=APPRENTICE_ID, earnings=40)
        )

        job.status = JobStatus.COMPLETED.value
        credit = ProfileStatsUpdate(id="u-1", job_request_id=job.id, profile_id=APPRENTICE_ID, earnings=40)
        with pytest.raises(StateConflictError, match="already credited"):
            storage.apply_completion(job, credit, transition_for(job, "in_progress"))

        assert storage.get_job(job.id).status == "in_progress"
        assert len(storage.get_transitions(job.id)) == 1

    def test_completion_of_job_no_longer_in_progress(self, storage):
        job = new_job()
        storage.save_job(job)
        job.status = JobStatus.COMPLETED.value
        credit = ProfileStatsUpdate(id="u-1", job_request_id=job.id, profile_id=APPRENTICE_ID, earnings=40)

        with pytest.raises(WrongStateError):
            storage.apply_completion(job, credit, transition_for(job, "in_progress"))
        assert storage.get_stats_update_for_job(job.id) is None

    def test_failed_history_write_rolls_back_completion(self):
        storage = FailingTransitionStorage()
        job = new_job(status=JobStatus.IN_PROGRESS.value, assigned_apprentice_id=APPRENTICE_ID)
        storage.save_job(job)
        job.status = JobStatus.COMPLETED.value
        credit = ProfileStatsUpdate(id="u-1", job_request_id=job.id, profile_id=APPRENTICE_ID, earnings=40)

        with pytest.raises(ConnectionError):
            storage.apply_completion(job, credit, transition_for(job, "in_progress"))

        assert storage.get_job(job.id).status == "in_progress"
        assert storage.list_pending_stats_updates() == []

    def test_cancellation_rejects_pending(self, storage):
        job, first, second = self.open_job_with_applications(storage)
        job.status = JobStatus.CANCELLED.value

        rejected = storage.apply_cancellation(job, transition_for(job, "open"), JobStatus.OPEN)

        assert rejected == 2
        statuses = {a.status for a in storage.list_applications(job_request_id=job.id)}
        assert statuses == {"rejected"}

    def test_cancellation_with_stale_status(self, storage):
        job, first, _ = self.open_job_with_applications(storage)
        job.status = JobStatus.CANCELLED.value

        with pytest.raises(WrongStateError):
            storage.apply_cancellation(job, transition_for(job, "in_progress"), JobStatus.IN_PROGRESS)
        assert storage.get_application(first.id).status == "pending"

    def test_failed_history_write_rolls_back_creation(self):
        storage = FailingTransitionStorage()
        job = new_job()

        with pytest.raises(ConnectionError):
            storage.apply_creation(job, transition_for(job))
        assert storage.get_job(job.id) is None


class TestListing:
    def test_list_jobs_filters(self, storage):
        a = new_job(skills_required=["tiling"])
        b = new_job(client_id=OTHER_APPRENTICE_ID, skills_required=["roofing"])
        storage.save_job(a)
        storage.save_job(b)

        assert [j.id for j in storage.list_jobs(client_id=CLIENT_ID)] == [a.id]
        assert [j.id for j in storage.list_jobs(skills=["ROOFING"])] == [b.id]
        assert storage.list_jobs(status="completed") == []

    def test_list_jobs_paging(self, storage):
        for _ in range(5):
            storage.save_job(new_job())
        assert len(storage.list_jobs(limit=2)) == 2
        assert len(storage.list_jobs(limit=10, offset=3)) == 2

    def test_pending_stats_updates(self, storage):
        job = new_job()
        storage.save_job(job)
        update = ProfileStatsUpdate(
            id="u-1", job_request_id=job.id, profile_id=APPRENTICE_ID, earnings=40
        )
        storage.save_stats_update(update)
        assert [u.id for u in storage.list_pending_stats_updates()] == ["u-1"]


class TestCascade:
    """Tests for deleting a profile's rows."""

    def test_client_deletion_removes_jobs_and_their_applications(self, storage):
        job = new_job()
        storage.save_job(job)
        app = new_application(job.id)
        storage.save_application(app)

        counts = storage.delete_profile_rows(CLIENT_ID)

        assert counts == {"job_requests": 1, "job_applications": 1}
        assert storage.get_job(job.id) is None
        assert storage.get_application(app.id) is None

    def test_apprentice_deletion_removes_their_applications(self, storage):
        job = new_job()
        storage.save_job(job)
        app = new_application(job.id)
        other = new_application(job.id, apprentice_id=OTHER_APPRENTICE_ID)
        storage.save_application(app)
        storage.save_application(other)

        storage.delete_profile_rows(APPRENTICE_ID)

        assert storage.get_application(app.id) is None
        assert storage.get_application(other.id) is not None
        assert storage.get_job(job.id) is not None

    def test_assigned_apprentice_cannot_be_deleted(self, storage):
        job = new_job(status="in_progress", assigned_apprentice_id=APPRENTICE_ID)
        storage.save_job(job)
        with pytest.raises(StateConflictError, match="assigned"):
            storage.delete_profile_rows(APPRENTICE_ID)
        assert storage.get_job(job.id) is not None
