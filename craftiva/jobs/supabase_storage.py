"""
Supabase-backed job storage.

PostgREST offers no client-side transactions. Single-row status changes are
conditional ``UPDATE ... WHERE id = ? AND status = ?`` statements. Lifecycle
changes that touch several rows (creation with history, acceptance,
completion with its outbox credit, cancellation) each call one plpgsql
function, which PostgREST runs in a single database transaction. The
database enforces the rest: unique (apprentice_id, job_request_id), the
partial unique index on accepted applications, one outbox row per job, and
the foreign-key cascades (see supabase/migrations/001_job_marketplace.sql).
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

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
    utc_now,
)
from craftiva.jobs.storage import DEFAULT_WRITE_HOOKS, Record, WriteHook, status_value

logger = logging.getLogger(__name__)

JOB_REQUESTS_TABLE = "job_requests"
JOB_APPLICATIONS_TABLE = "job_applications"
JOB_TRANSITIONS_TABLE = "job_state_transitions"
PROFILE_STATS_OUTBOX_TABLE = "profile_stats_outbox"

CREATE_JOB_FUNCTION = "create_job_request_with_history"
ACCEPT_APPLICATION_FUNCTION = "accept_job_application"
COMPLETE_JOB_FUNCTION = "complete_job_request"
CANCEL_JOB_FUNCTION = "cancel_job_request"

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"

# SQLSTATEs raised by the lifecycle functions when a precondition fails
JOB_NOT_OPEN = "CV001"
APPLICATION_NOT_PENDING = "CV002"
JOB_STATUS_CHANGED = "CV003"

LIFECYCLE_ERRORS = {
    JOB_NOT_OPEN: JobNotOpenError,
    APPLICATION_NOT_PENDING: StateConflictError,
    JOB_STATUS_CHANGED: WrongStateError,
}


def _error_code(exc: Exception) -> str:
    code = getattr(exc, "code", None)
    if code:
        return str(code)
    return str(exc)


def _is_unique_violation(exc: Exception) -> bool:
    text = _error_code(exc).lower() + " " + str(exc).lower()
    return UNIQUE_VIOLATION in text or "duplicate" in text or "unique" in text


def _is_foreign_key_violation(exc: Exception) -> bool:
    text = _error_code(exc).lower() + " " + str(exc).lower()
    return FOREIGN_KEY_VIOLATION in text or "foreign key" in text


class SupabaseJobStorage:
    """Job storage over a ``supabase.Client``."""

    def __init__(self, client, write_hooks: Optional[Sequence[WriteHook]] = None):
        self._client = client
        self._write_hooks = tuple(DEFAULT_WRITE_HOOKS if write_hooks is None else write_hooks)

    def _payload(self, record: Record, created: bool) -> Dict[str, Any]:
        now = utc_now()
        for hook in self._write_hooks:
            hook(record, now, created)
        return record.to_dict()

    def _call(self, function: str, params: Dict[str, Any], conflict: str) -> Any:
        """Run a lifecycle function and map its failures to domain errors.

        ``conflict`` is the message for a unique-constraint violation.
        """
        try:
            result = self._client.rpc(function, params).execute()
        except Exception as e:
            error_cls = LIFECYCLE_ERRORS.get(str(getattr(e, "code", None) or ""))
            if error_cls is not None:
                logger.warning(f"{function} precondition failed: {getattr(e, 'message', None) or e}")
                raise error_cls(getattr(e, "message", None) or str(e)) from e
            if _is_unique_violation(e):
                raise StateConflictError(conflict) from e
            raise
        data = result.data
        if isinstance(data, list):
            return data[0] if data else None
        return data

    @contextmanager
    def transaction(self) -> Iterator["SupabaseJobStorage"]:
        """Group writes for the caller.

        This opens no database transaction. Multi-row lifecycle changes go
        through the ``apply_*`` methods instead, each a single function call.
        """
        yield self

    # === Job requests ===

    def save_job(self, job: JobRequest) -> str:
        data = self._payload(job, created=True)
        result = self._client.table(JOB_REQUESTS_TABLE).insert(data).execute()
        if not result.data:
            raise StateConflictError(f"Failed to create job request {job.id}")
        return result.data[0]["id"]

    def get_job(self, job_id: str) -> Optional[JobRequest]:
        result = self._client.table(JOB_REQUESTS_TABLE).select("*").eq("id", job_id).execute()
        return JobRequest.from_dict(result.data[0]) if result.data else None

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        client_id: Optional[str] = None,
        assigned_apprentice_id: Optional[str] = None,
        skills: Optional[List[str]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[JobRequest]:
        query = self._client.table(JOB_REQUESTS_TABLE).select("*")

        status_val = status_value(status)
        if status_val:
            query = query.eq("status", status_val)
        if client_id:
            query = query.eq("client_id", client_id)
        if assigned_apprentice_id:
            query = query.eq("assigned_apprentice_id", assigned_apprentice_id)
        if skills:
            # Jobs requiring any of the given skills
            query = query.overlaps("skills_required", [s.strip().lower() for s in skills])

        query = query.order("created_at", desc=True).range(offset, offset + limit - 1)
        result = query.execute()
        return [JobRequest.from_dict(row) for row in result.data or []]

    def update_job(self, job: JobRequest, expected_status: Optional[JobStatus] = None) -> bool:
        data = self._payload(job, created=False)
        for key in ("id", "client_id", "created_at"):
            data.pop(key, None)

        query = self._client.table(JOB_REQUESTS_TABLE).update(data).eq("id", job.id)
        expected = status_value(expected_status)
        if expected is not None:
            query = query.eq("status", expected)
        result = query.execute()

        if result.data:
            return True
        if expected is not None:
            logger.warning(
                f"Race condition detected on job {job.id}: expected status '{expected}'"
            )
        return False

    # === Applications ===

    def save_application(self, application: JobApplication) -> str:
        data = self._payload(application, created=True)
        try:
            result = self._client.table(JOB_APPLICATIONS_TABLE).insert(data).execute()
        except Exception as e:
            if _is_unique_violation(e):
                raise DuplicateApplicationError(
                    f"Apprentice {application.apprentice_id} already applied "
                    f"to job request {application.job_request_id}"
                ) from e
            if _is_foreign_key_violation(e):
                raise JobNotFoundError(
                    f"Job request {application.job_request_id} not found"
                ) from e
            raise
        if not result.data:
            raise StateConflictError(f"Failed to create application {application.id}")
        return result.data[0]["id"]

    def get_application(self, application_id: str) -> Optional[JobApplication]:
        result = (
            self._client.table(JOB_APPLICATIONS_TABLE)
            .select("*")
            .eq("id", application_id)
            .execute()
        )
        return JobApplication.from_dict(result.data[0]) if result.data else None

    def list_applications(
        self,
        job_request_id: Optional[str] = None,
        apprentice_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
        limit: int = 100,
    ) -> List[JobApplication]:
        query = self._client.table(JOB_APPLICATIONS_TABLE).select("*")
        if job_request_id:
            query = query.eq("job_request_id", job_request_id)
        if apprentice_id:
            query = query.eq("apprentice_id", apprentice_id)
        status_val = status_value(status)
        if status_val:
            query = query.eq("status", status_val)
        result = query.order("created_at", desc=True).limit(limit).execute()
        return [JobApplication.from_dict(row) for row in result.data or []]

    def update_application(
        self,
        application: JobApplication,
        expected_status: Optional[ApplicationStatus] = None,
    ) -> bool:
        data = self._payload(application, created=False)
        update = {"status": data["status"], "updated_at": data["updated_at"]}

        query = (
            self._client.table(JOB_APPLICATIONS_TABLE).update(update).eq("id", application.id)
        )
        expected = status_value(expected_status)
        if expected is not None:
            query = query.eq("status", expected)
        try:
            result = query.execute()
        except Exception as e:
            if _is_unique_violation(e):
                raise StateConflictError(
                    f"Job request {application.job_request_id} already has an accepted application"
                ) from e
            raise
        return bool(result.data)

    # === Transitions ===

    def save_transition(self, transition: JobStateTransition) -> str:
        if transition.created_at is None:
            transition.created_at = utc_now()
        self._client.table(JOB_TRANSITIONS_TABLE).insert(transition.to_dict()).execute()
        return transition.id

    def get_transitions(self, job_request_id: str) -> List[JobStateTransition]:
        result = (
            self._client.table(JOB_TRANSITIONS_TABLE)
            .select("*")
            .eq("job_request_id", job_request_id)
            .order("created_at")
            .execute()
        )
        return [JobStateTransition.from_dict(row) for row in result.data or []]

    # === Profile stats outbox ===

    def save_stats_update(self, update: ProfileStatsUpdate) -> str:
        if update.created_at is None:
            update.created_at = utc_now()
        try:
            self._client.table(PROFILE_STATS_OUTBOX_TABLE).insert(update.to_dict()).execute()
        except Exception as e:
            if _is_unique_violation(e):
                raise StateConflictError(
                    f"Job request {update.job_request_id} was already credited"
                ) from e
            raise
        return update.id

    def list_pending_stats_updates(self, limit: int = 100) -> List[ProfileStatsUpdate]:
        result = (
            self._client.table(PROFILE_STATS_OUTBOX_TABLE)
            .select("*")
            .is_("applied_at", "null")
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return [ProfileStatsUpdate.from_dict(row) for row in result.data or []]

    def update_stats_update(self, update: ProfileStatsUpdate) -> bool:
        data = update.to_dict()
        result = (
            self._client.table(PROFILE_STATS_OUTBOX_TABLE)
            .update(
                {
                    "applied_at": data["applied_at"],
                    "attempts": data["attempts"],
                    "last_error": data["last_error"],
                }
            )
            .eq("id", update.id)
            .execute()
        )
        return bool(result.data)

    # === Lifecycle changes ===

    def apply_creation(self, job: JobRequest, transition: JobStateTransition) -> str:
        if transition.created_at is None:
            transition.created_at = utc_now()
        row = self._call(
            CREATE_JOB_FUNCTION,
            {"p_job": self._payload(job, created=True), "p_transition": transition.to_dict()},
            conflict=f"Job request {job.id} already exists",
        )
        if not row:
            raise StateConflictError(f"Failed to create job request {job.id}")
        return row["id"]

    def apply_acceptance(
        self,
        job: JobRequest,
        application: JobApplication,
        transition: JobStateTransition,
        reject_siblings: bool = True,
    ) -> int:
        self._payload(job, created=False)
        self._payload(application, created=False)
        if transition.created_at is None:
            transition.created_at = utc_now()
        rejected = self._call(
            ACCEPT_APPLICATION_FUNCTION,
            {
                "p_application_id": application.id,
                "p_job_request_id": job.id,
                "p_apprentice_id": application.apprentice_id,
                "p_reject_siblings": reject_siblings,
                "p_transition": transition.to_dict(),
            },
            conflict=f"Job request {job.id} already has an accepted application",
        )
        transition.metadata["rejected_applications"] = rejected or 0
        return rejected or 0

    def apply_completion(
        self,
        job: JobRequest,
        credit: ProfileStatsUpdate,
        transition: JobStateTransition,
    ) -> None:
        self._payload(job, created=False)
        now = utc_now()
        if credit.created_at is None:
            credit.created_at = now
        if transition.created_at is None:
            transition.created_at = now
        self._call(
            COMPLETE_JOB_FUNCTION,
            {
                "p_job_request_id": job.id,
                "p_completed_at": job.to_dict()["completed_at"],
                "p_update": credit.to_dict(),
                "p_transition": transition.to_dict(),
            },
            conflict=f"Job request {job.id} was already credited",
        )

    def apply_cancellation(
        self,
        job: JobRequest,
        transition: JobStateTransition,
        expected_status: JobStatus,
    ) -> int:
        self._payload(job, created=False)
        if transition.created_at is None:
            transition.created_at = utc_now()
        rejected = self._call(
            CANCEL_JOB_FUNCTION,
            {
                "p_job_request_id": job.id,
                "p_expected_status": status_value(expected_status),
                "p_transition": transition.to_dict(),
            },
            conflict=f"Job request {job.id} could not be cancelled",
        )
        transition.metadata["rejected_applications"] = rejected or 0
        return rejected or 0
