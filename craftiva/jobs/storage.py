"""
Jobs storage layer.

Defines the persistence protocol the lifecycle engine runs against, and an
in-memory implementation for testing and local development. The in-memory
store emulates what the database provides in production: transactions,
compare-and-swap status updates, the (apprentice, job) uniqueness
constraint, the single-accepted-application index and cascading deletes.
The ``apply_*`` methods are the multi-row lifecycle changes; each one
commits all of its rows or none of them.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Sequence, Union

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

logger = logging.getLogger(__name__)

Record = Union[JobRequest, JobApplication]
WriteHook = Callable[[Record, datetime, bool], None]


def touch_updated_at(record: Record, now: datetime, created: bool) -> None:
    """Stamp ``updated_at`` on every write and ``created_at`` on insert.

    Applied uniformly to job requests and applications by every storage
    backend, whatever field the write changed.
    """
    if created and record.created_at is None:
        record.created_at = now
    record.updated_at = now


DEFAULT_WRITE_HOOKS: Sequence[WriteHook] = (touch_updated_at,)


def status_value(status) -> Optional[str]:
    if status is None:
        return None
    return status.value if hasattr(status, "value") else status


class JobStorage(Protocol):
    """Protocol for job persistence backends."""

    def transaction(self):
        """Context manager grouping writes into one all-or-nothing unit."""
        ...

    # Job requests
    def save_job(self, job: JobRequest) -> str:
        """Insert a job request. Returns the job ID."""
        ...

    def get_job(self, job_id: str) -> Optional[JobRequest]:
        ...

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        client_id: Optional[str] = None,
        assigned_apprentice_id: Optional[str] = None,
        skills: Optional[List[str]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[JobRequest]:
        ...

    def update_job(self, job: JobRequest, expected_status: Optional[JobStatus] = None) -> bool:
        """Write a job back.

        With ``expected_status`` the write only happens if the stored status
        still matches. Returns False when nothing was written.
        """
        ...

    # Applications
    def save_application(self, application: JobApplication) -> str:
        """Insert an application. Raises DuplicateApplicationError on a repeat pair."""
        ...

    def get_application(self, application_id: str) -> Optional[JobApplication]:
        ...

    def list_applications(
        self,
        job_request_id: Optional[str] = None,
        apprentice_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
        limit: int = 100,
    ) -> List[JobApplication]:
        ...

    def update_application(
        self,
        application: JobApplication,
        expected_status: Optional[ApplicationStatus] = None,
    ) -> bool:
        ...

    # Transitions (audit log)
    def save_transition(self, transition: JobStateTransition) -> str:
        ...

    def get_transitions(self, job_request_id: str) -> List[JobStateTransition]:
        ...

    # Lifecycle changes spanning several rows. Each is all-or-nothing.
    def apply_creation(self, job: JobRequest, transition: JobStateTransition) -> str:
        """Insert a job request together with its first history entry."""
        ...

    def apply_acceptance(
        self,
        job: JobRequest,
        application: JobApplication,
        transition: JobStateTransition,
        reject_siblings: bool = True,
    ) -> int:
        """Assign ``job`` and accept ``application`` in one unit.

        ``job`` must be open and ``application`` pending when the write
        lands. With ``reject_siblings`` every other pending application of
        the job is rejected as well. The rejected count is added to the
        transition metadata and returned.

        Raises:
            JobNotOpenError: The job is no longer open
            StateConflictError: The application is no longer pending
        """
        ...

    def apply_completion(
        self,
        job: JobRequest,
        credit: ProfileStatsUpdate,
        transition: JobStateTransition,
    ) -> None:
        """Complete an in-progress job and queue its profile credit.

        Raises:
            WrongStateError: The job is no longer in progress
            StateConflictError: The job was already credited
        """
        ...

    def apply_cancellation(
        self,
        job: JobRequest,
        transition: JobStateTransition,
        expected_status: JobStatus,
    ) -> int:
        """Cancel a job and reject its pending applications.

        Returns the rejected count, which is also added to the transition
        metadata.

        Raises:
            WrongStateError: The job left ``expected_status``
        """
        ...

    # Profile stats outbox
    def save_stats_update(self, update: ProfileStatsUpdate) -> str:
        ...

    def list_pending_stats_updates(self, limit: int = 100) -> List[ProfileStatsUpdate]:
        ...

    def update_stats_update(self, update: ProfileStatsUpdate) -> bool:
        ...


class InMemoryJobStorage:
    """In-memory job storage for testing and local development.

    Every read returns a copy, so callers can only change stored rows by
    writing them back.
    """

    def __init__(self, write_hooks: Optional[Sequence[WriteHook]] = None):
        self._jobs: Dict[str, JobRequest] = {}
        self._applications: Dict[str, JobApplication] = {}
        self._transitions: Dict[str, List[JobStateTransition]] = {}
        self._stats_updates: Dict[str, ProfileStatsUpdate] = {}
        self._write_hooks = tuple(DEFAULT_WRITE_HOOKS if write_hooks is None else write_hooks)
        self._lock = threading.RLock()
        self._depth = 0

    def _utc_now(self) -> datetime:
        return utc_now()

    def _before_write(self, record: Record, created: bool) -> None:
        now = self._utc_now()
        for hook in self._write_hooks:
            hook(record, now, created)

    # === Transactions ===

    @contextmanager
    def transaction(self) -> Iterator["InMemoryJobStorage"]:
        """Serialize writers and roll back every change on exception.

        Nested transactions join the outermost one.
        """
        with self._lock:
            outermost = self._depth == 0
            snapshot = self._snapshot() if outermost else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                if outermost:
                    self._restore(snapshot)
                    logger.debug("Transaction rolled back")
                raise
            finally:
                self._depth -= 1

    def _snapshot(self) -> tuple:
        return copy.deepcopy(
            (self._jobs, self._applications, self._transitions, self._stats_updates)
        )

    def _restore(self, snapshot: tuple) -> None:
        self._jobs, self._applications, self._transitions, self._stats_updates = snapshot

    # === Job requests ===

    def save_job(self, job: JobRequest) -> str:
        with self._lock:
            if job.id in self._jobs:
                raise StateConflictError(f"Job request {job.id} already exists")
            self._before_write(job, created=True)
            self._jobs[job.id] = copy.deepcopy(job)
            self._transitions.setdefault(job.id, [])
            return job.id

    def get_job(self, job_id: str) -> Optional[JobRequest]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        client_id: Optional[str] = None,
        assigned_apprentice_id: Optional[str] = None,
        skills: Optional[List[str]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[JobRequest]:
        with self._lock:
            jobs = list(self._jobs.values())

            status_val = status_value(status)
            if status_val is not None:
                jobs = [j for j in jobs if j.status == status_val]
            if client_id is not None:
                jobs = [j for j in jobs if j.client_id == client_id]
            if assigned_apprentice_id is not None:
                jobs = [j for j in jobs if j.assigned_apprentice_id == assigned_apprentice_id]
            if skills:
                wanted = {s.strip().lower() for s in skills}
                jobs = [j for j in jobs if wanted.intersection(j.skills_required)]

            jobs.sort(key=lambda j: j.created_at or self._utc_now(), reverse=True)
            return [copy.deepcopy(j) for j in jobs[offset : offset + limit]]

    def update_job(self, job: JobRequest, expected_status: Optional[JobStatus] = None) -> bool:
        with self._lock:
            stored = self._jobs.get(job.id)
            if stored is None:
                return False
            expected = status_value(expected_status)
            if expected is not None and stored.status != expected:
                logger.debug(
                    "Job %s compare-and-swap missed: expected %s, found %s",
                    job.id,
                    expected,
                    stored.status,
                )
                return False
            self._before_write(job, created=False)
            self._jobs[job.id] = copy.deepcopy(job)
            return True

    # === Applications ===

    def save_application(self, application: JobApplication) -> str:
        with self._lock:
            if application.job_request_id not in self._jobs:
                raise JobNotFoundError(f"Job request {application.job_request_id} not found")
            for existing in self._applications.values():
                if (
                    existing.apprentice_id == application.apprentice_id
                    and existing.job_request_id == application.job_request_id
                ):
                    raise DuplicateApplicationError(
                        f"Apprentice {application.apprentice_id} already applied "
                        f"to job request {application.job_request_id}"
                    )
            self._check_single_acceptance(application)
            self._before_write(application, created=True)
            self._applications[application.id] = copy.deepcopy(application)
            return application.id

    def get_application(self, application_id: str) -> Optional[JobApplication]:
        with self._lock:
            app = self._applications.get(application_id)
            return copy.deepcopy(app) if app else None

    def list_applications(
        self,
        job_request_id: Optional[str] = None,
        apprentice_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
        limit: int = 100,
    ) -> List[JobApplication]:
        with self._lock:
            apps = list(self._applications.values())

            if job_request_id is not None:
                apps = [a for a in apps if a.job_request_id == job_request_id]
            if apprentice_id is not None:
                apps = [a for a in apps if a.apprentice_id == apprentice_id]
            status_val = status_value(status)
            if status_val is not None:
                apps = [a for a in apps if a.status == status_val]

            apps.sort(key=lambda a: a.created_at or self._utc_now(), reverse=True)
            return [copy.deepcopy(a) for a in apps[:limit]]

    def update_application(
        self,
        application: JobApplication,
        expected_status: Optional[ApplicationStatus] = None,
    ) -> bool:
        with self._lock:
            stored = self._applications.get(application.id)
            if stored is None:
                return False
            expected = status_value(expected_status)
            if expected is not None and stored.status != expected:
                return False
            self._check_single_acceptance(application)
            self._before_write(application, created=False)
            self._applications[application.id] = copy.deepcopy(application)
            return True

    def _check_single_acceptance(self, application: JobApplication) -> None:
        """Emulate the partial unique index on accepted applications per job."""
        if not application.is_accepted:
            return
        for other in self._applications.values():
            if (
                other.id != application.id
                and other.job_request_id == application.job_request_id
                and other.is_accepted
            ):
                raise StateConflictError(
                    f"Job request {application.job_request_id} already has an accepted application"
                )

    # === Transitions ===

    def save_transition(self, transition: JobStateTransition) -> str:
        with self._lock:
            if transition.created_at is None:
                transition.created_at = self._utc_now()
            self._transitions.setdefault(transition.job_request_id, []).append(
                copy.deepcopy(transition)
            )
            return transition.id

    def get_transitions(self, job_request_id: str) -> List[JobStateTransition]:
        with self._lock:
            transitions = self._transitions.get(job_request_id, [])
            return [copy.deepcopy(t) for t in transitions]

    # === Profile stats outbox ===

    def save_stats_update(self, update: ProfileStatsUpdate) -> str:
        with self._lock:
            for existing in self._stats_updates.values():
                if existing.job_request_id == update.job_request_id:
                    raise StateConflictError(
                        f"Job request {update.job_request_id} was already credited"
                    )
            if update.created_at is None:
                update.created_at = self._utc_now()
            self._stats_updates[update.id] = copy.deepcopy(update)
            return update.id

    def list_pending_stats_updates(self, limit: int = 100) -> List[ProfileStatsUpdate]:
        with self._lock:
            pending = [u for u in self._stats_updates.values() if u.is_pending]
            pending.sort(key=lambda u: u.created_at or self._utc_now())
            return [copy.deepcopy(u) for u in pending[:limit]]

    def get_stats_update_for_job(self, job_request_id: str) -> Optional[ProfileStatsUpdate]:
        with self._lock:
            for update in self._stats_updates.values():
                if update.job_request_id == job_request_id:
                    return copy.deepcopy(update)
            return None

    def update_stats_update(self, update: ProfileStatsUpdate) -> bool:
        with self._lock:
            if update.id not in self._stats_updates:
                return False
            self._stats_updates[update.id] = copy.deepcopy(update)
            return True

    # === Lifecycle changes ===

    def apply_creation(self, job: JobRequest, transition: JobStateTransition) -> str:
        with self.transaction():
            self.save_job(job)
            self.save_transition(transition)
            return job.id

    def apply_acceptance(
        self,
        job: JobRequest,
        application: JobApplication,
        transition: JobStateTransition,
        reject_siblings: bool = True,
    ) -> int:
        with self.transaction():
            if not self.update_job(job, expected_status=JobStatus.OPEN):
                raise JobNotOpenError("Another application was already accepted for this job")
            if not self.update_application(application, expected_status=ApplicationStatus.PENDING):
                raise StateConflictError("Application status was modified by another request")
            rejected = 0
            if reject_siblings:
                rejected = self._reject_pending(job.id, exclude_id=application.id)
            transition.metadata["rejected_applications"] = rejected
            self.save_transition(transition)
            return rejected

    def apply_completion(
        self,
        job: JobRequest,
        credit: ProfileStatsUpdate,
        transition: JobStateTransition,
    ) -> None:
        with self.transaction():
            if not self.update_job(job, expected_status=JobStatus.IN_PROGRESS):
                raise WrongStateError("Job status changed while completing")
            self.save_stats_update(credit)
            self.save_transition(transition)

    def apply_cancellation(
        self,
        job: JobRequest,
        transition: JobStateTransition,
        expected_status: JobStatus,
    ) -> int:
        with self.transaction():
            if not self.update_job(job, expected_status=expected_status):
                raise WrongStateError(
                    "Job status was modified by another request. Please refresh and try again."
                )
            rejected = self._reject_pending(job.id)
            transition.metadata["rejected_applications"] = rejected
            self.save_transition(transition)
            return rejected

    def _reject_pending(self, job_request_id: str, exclude_id: Optional[str] = None) -> int:
        rejected = 0
        for app in self._applications.values():
            if app.job_request_id != job_request_id or app.id == exclude_id or not app.is_pending:
                continue
            app.status = ApplicationStatus.REJECTED.value
            self._before_write(app, created=False)
            rejected += 1
        return rejected

    # === Cascades ===

    def delete_profile_rows(self, profile_id: str) -> Dict[str, int]:
        """Apply the foreign-key rules for a deleted profile.

        Job requests owned by the profile and applications it submitted are
        removed, along with applications to the removed jobs. A profile that
        is still the assigned apprentice of a job cannot be deleted.
        """
        with self.transaction():
            blocking = [
                j.id for j in self._jobs.values() if j.assigned_apprentice_id == profile_id
                and j.client_id != profile_id
            ]
            if blocking:
                raise StateConflictError(
                    f"Profile {profile_id} is assigned to job requests {sorted(blocking)}"
                )

            job_ids = {j.id for j in self._jobs.values() if j.client_id == profile_id}
            app_ids = {
                a.id
                for a in self._applications.values()
                if a.apprentice_id == profile_id or a.job_request_id in job_ids
            }
            for job_id in job_ids:
                del self._jobs[job_id]
                self._transitions.pop(job_id, None)
            self._stats_updates = {
                k: u
                for k, u in self._stats_updates.items()
                if u.job_request_id not in job_ids and u.profile_id != profile_id
            }
            for app_id in app_ids:
                del self._applications[app_id]

            logger.info(
                "Cascade delete | profile=%s | jobs=%d | applications=%d",
                profile_id,
                len(job_ids),
                len(app_ids),
            )
            return {"job_requests": len(job_ids), "job_applications": len(app_ids)}
