"""Tests for the row-level access policy."""

import pytest
from factories import APPRENTICE_ID, CLIENT_ID, OTHER_APPRENTICE_ID, OUTSIDER_ID, future_deadline

from craftiva.errors import AuthorizationError
from craftiva.jobs.models import JobApplication, JobRequest, JobStatus
from craftiva.policy import (
    POLICY_RULES,
    Actor,
    Decision,
    Operation,
    authorize,
    describe_policies,
    is_allowed,
    matching_rules,
    require,
    visible_applications,
    visible_jobs,
)


def make_job(job_id="job-1", status=JobStatus.OPEN.value, assignee=None) -> JobRequest:
    return JobRequest(
        id=job_id,
        client_id=CLIENT_ID,
        title="Paint the fence",
        description="About twenty metres of picket fence.",
        budget_min=80,
        budget_max=120,
        deadline=future_deadline(),
        status=status,
        assigned_apprentice_id=assignee,
    )


def make_application(job_id="job-1", apprentice_id=APPRENTICE_ID) -> JobApplication:
    return JobApplication(
        id=f"app-{apprentice_id[:4]}",
        apprentice_id=apprentice_id,
        job_request_id=job_id,
        proposal="Two coats, done by Friday.",
    )


CLIENT = Actor(CLIENT_ID)
APPRENTICE = Actor(APPRENTICE_ID)
OTHER = Actor(OTHER_APPRENTICE_ID)
OUTSIDER = Actor(OUTSIDER_ID)


class TestActor:
    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            Actor("")


class TestJobRequestRead:
    def test_open_jobs_are_public(self):
        assert authorize(OUTSIDER, Operation.READ, make_job()) is Decision.ALLOW

    @pytest.mark.parametrize("status", ["in_progress", "completed", "cancelled"])
    def test_non_open_jobs_hidden_from_outsiders(self, status):
        job = make_job(status=status, assignee=APPRENTICE_ID if status != "cancelled" else None)
        assert authorize(OUTSIDER, Operation.READ, job) is Decision.DENY

    @pytest.mark.parametrize("status", ["in_progress", "completed", "cancelled"])
    def test_client_always_reads_own_job(self, status):
        job = make_job(status=status, assignee=APPRENTICE_ID if status != "cancelled" else None)
        assert authorize(CLIENT, Operation.READ, job) is Decision.ALLOW

    def test_assignee_reads_assigned_job(self):
        job = make_job(status="in_progress", assignee=APPRENTICE_ID)
        assert is_allowed(APPRENTICE, Operation.READ, job)
        assert not is_allowed(OTHER, Operation.READ, job)

    def test_read_rules_are_permissive(self):
        rules = matching_rules(CLIENT, Operation.READ, make_job())
        assert rules == [
            "Users can view all open job requests",
            "Users can view their own job requests",
        ]


class TestJobRequestWrite:
    def test_only_client_may_create(self):
        assert is_allowed(CLIENT, Operation.CREATE, make_job())
        assert not is_allowed(APPRENTICE, Operation.CREATE, make_job())

    def test_client_and_assignee_may_update(self):
        job = make_job(status="in_progress", assignee=APPRENTICE_ID)
        assert is_allowed(CLIENT, Operation.UPDATE, job)
        assert is_allowed(APPRENTICE, Operation.UPDATE, job)
        assert not is_allowed(OTHER, Operation.UPDATE, job)

    def test_delete_is_never_allowed(self):
        assert authorize(CLIENT, Operation.DELETE, make_job()) is Decision.DENY

    def test_operation_accepts_string_value(self):
        assert authorize(CLIENT, "update", make_job()) is Decision.ALLOW


class TestApplicationAccess:
    def test_applicant_reads_own_application(self):
        assert is_allowed(APPRENTICE, Operation.READ, make_application())

    def test_job_owner_reads_applications(self):
        assert is_allowed(CLIENT, Operation.READ, make_application(), make_job())

    def test_owner_rule_fails_closed_without_parent(self):
        assert not is_allowed(CLIENT, Operation.READ, make_application())

    def test_owner_rule_ignores_mismatched_parent(self):
        app = make_application(job_id="job-2")
        assert not is_allowed(CLIENT, Operation.READ, app, make_job("job-1"))

    def test_other_apprentices_cannot_read(self):
        assert not is_allowed(OTHER, Operation.READ, make_application(), make_job())

    def test_create_as_self_only(self):
        app = make_application()
        assert is_allowed(APPRENTICE, Operation.CREATE, app)
        assert not is_allowed(OTHER, Operation.CREATE, app)

    def test_only_owner_updates_status(self):
        app = make_application()
        job = make_job()
        assert is_allowed(CLIENT, Operation.UPDATE, app, job)
        assert not is_allowed(APPRENTICE, Operation.UPDATE, app, job)


class TestRequire:
    def test_allowed_returns_none(self):
        assert require(CLIENT, Operation.UPDATE, make_job()) is None

    def test_denied_raises(self):
        with pytest.raises(AuthorizationError, match="Not allowed to update this job request"):
            require(OUTSIDER, Operation.UPDATE, make_job())

    def test_denied_application_message(self):
        with pytest.raises(AuthorizationError, match="job application"):
            require(OTHER, Operation.READ, make_application(), make_job())


class TestFiltering:
    def test_visible_jobs(self):
        jobs = [
            make_job("open"),
            make_job("mine-assigned", status="in_progress", assignee=APPRENTICE_ID),
            make_job("theirs", status="in_progress", assignee=OTHER_APPRENTICE_ID),
        ]
        assert [j.id for j in visible_jobs(APPRENTICE, jobs)] == ["open", "mine-assigned"]
        assert [j.id for j in visible_jobs(CLIENT, jobs)] == ["open", "mine-assigned", "theirs"]

    def test_visible_applications(self):
        job = make_job()
        apps = [make_application(), make_application(apprentice_id=OTHER_APPRENTICE_ID)]
        jobs_by_id = {job.id: job}

        assert len(visible_applications(CLIENT, apps, jobs_by_id)) == 2
        assert [a.apprentice_id for a in visible_applications(OTHER, apps, jobs_by_id)] == [
            OTHER_APPRENTICE_ID
        ]
        assert visible_applications(OUTSIDER, apps, jobs_by_id) == []


def test_describe_policies_covers_every_rule():
    grouped = describe_policies()
    assert sum(len(names) for names in grouped.values()) == len(POLICY_RULES)
    assert "job_requests.delete" not in grouped
    assert grouped["job_applications.update"] == ["Job owners can update application status"]
