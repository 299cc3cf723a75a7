"""
Job lifecycle service.

Validates and applies every state change on job requests and applications.
Each operation re-reads the rows it depends on and hands its writes to the
storage as one unit, with compare-and-swap on the status, so concurrent
callers cannot both win the same transition.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from craftiva.config import MarketplaceConfig
from craftiva.errors import (
    ApplicationNotFoundError,
    InvalidProgressError,
    JobNotFoundError,
    JobNotOpenError,
    ProfileNotFoundError,
    StateConflictError,
    ValidationError,
    WrongActorError,
    WrongStateError,
)
from craftiva.jobs.models import (
    MAX_PROGRESS,
    MIN_PROGRESS,
    ApplicationStatus,
    JobApplication,
    JobRequest,
    JobStateTransition,
    JobStatus,
    ProfileStatsUpdate,
    parse_date,
    utc_now,
)
from craftiva.jobs.storage import JobStorage
from craftiva.profiles import ProfileStatsRelay, ProfileStore

logger = logging.getLogger(__name__)

# Fields a client may patch through update_job_request.
CLIENT_EDITABLE_FIELDS = frozenset(
    {"title", "description", "budget_min", "budget_max", "skills_required", "location", "deadline"}
)
# Fields that only change while the job is still open.
OPEN_ONLY_FIELDS = frozenset({"budget_min", "budget_max", "deadline"})
# Fields the assigned apprentice may patch.
ASSIGNEE_EDITABLE_FIELDS = frozenset({"progress", "status"})
# Fields nobody may patch directly.
PROTECTED_FIELDS = frozenset(
    {"id", "client_id", "assigned_apprentice_id", "completed_at", "created_at", "updated_at"}
)
PATCHABLE_FIELDS = CLIENT_EDITABLE_FIELDS | ASSIGNEE_EDITABLE_FIELDS | PROTECTED_FIELDS


@dataclass
class JobSearchFilters:
    """Filters for listing job requests."""

    status: Optional[JobStatus] = None
    client_id: Optional[str] = None
    assigned_apprentice_id: Optional[str] = None
    skills: Optional[List[str]] = None
    limit: int = 100
    offset: int = 0


class JobService:
    """Lifecycle engine for job requests and applications.

    Callers are expected to have passed the access policy already; the
    service still re-checks the actor for every mutation it performs.
    """

    def __init__(
        self,
        storage: JobStorage,
        config: Optional[MarketplaceConfig] = None,
        profiles: Optional[ProfileStore] = None,
    ):
        self._storage = storage
        self._config = config or MarketplaceConfig()
        self._profiles = profiles
        self._relay = ProfileStatsRelay(storage, profiles) if profiles is not None else None

    @property
    def config(self) -> MarketplaceConfig:
        return self._config

    @property
    def storage(self) -> JobStorage:
        return self._storage

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_profile(self, profile_id: str) -> None:
        if self._profiles is None:
            return
        if self._profiles.get_profile(profile_id) is None:
            raise ProfileNotFoundError(f"Profile {profile_id} not found")

    def _load_job(self, job_request_id: str) -> JobRequest:
        job = self._storage.get_job(job_request_id)
        if job is None:
            raise JobNotFoundError(f"Job request {job_request_id} not found")
        return job

    def _load_application(self, application_id: str) -> JobApplication:
        app = self._storage.get_application(application_id)
        if app is None:
            raise ApplicationNotFoundError(f"Application {application_id} not found")
        return app

    @staticmethod
    def _transition(
        job: JobRequest,
        from_status: Optional[str],
        actor_id: str,
        **metadata: Any,
    ) -> JobStateTransition:
        return JobStateTransition(
            id=str(uuid.uuid4()),
            job_request_id=job.id,
            from_status=from_status,
            to_status=job.status,
            actor_id=actor_id,
            metadata=metadata,
        )

    def _validate_deadline(self, deadline: Any) -> date:
        try:
            parsed = parse_date(deadline)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid deadline: {deadline!r}")
        if parsed is None:
            raise ValidationError("deadline is required")
        if not self._config.allow_past_deadline and parsed < utc_now().date():
            raise ValidationError("Deadline cannot be in the past")
        return parsed

    def _validate_text_fields(self, title: Any, description: Any) -> None:
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Job title cannot be empty")
        if len(title) > self._config.max_title_length:
            raise ValidationError(
                f"Title too long (max {self._config.max_title_length} characters)"
            )
        if not isinstance(description, str) or not description.strip():
            raise ValidationError("Job description cannot be empty")

    def _validate_skills(self, skills: Optional[List[str]]) -> None:
        if skills is not None and len(skills) > self._config.max_skills:
            raise ValidationError(f"Too many skills (max {self._config.max_skills})")

    @staticmethod
    def _validate_progress(progress: Any) -> int:
        if isinstance(progress, bool) or not isinstance(progress, int):
            raise InvalidProgressError(f"Progress must be an integer, got {progress!r}")
        if not MIN_PROGRESS <= progress <= MAX_PROGRESS:
            raise InvalidProgressError(
                f"Progress must be between {MIN_PROGRESS} and {MAX_PROGRESS}, got {progress}"
            )
        return progress

    # ------------------------------------------------------------------
    # Job requests
    # ------------------------------------------------------------------

    def create_job_request(
        self,
        client_id: str,
        title: str,
        description: str,
        budget_min: int,
        budget_max: int,
        deadline: date,
        skills_required: Optional[List[str]] = None,
        location: Optional[str] = None,
    ) -> JobRequest:
        """Create an open job request owned by ``client_id``.

        Raises:
            ValidationError: Missing text, bad budget range, past deadline
            ProfileNotFoundError: The client has no profile
        """
        if not client_id:
            raise ValidationError("client_id is required")
        self._validate_text_fields(title, description)
        self._validate_skills(skills_required)
        parsed_deadline = self._validate_deadline(deadline)
        self._require_profile(client_id)

        try:
            job = JobRequest(
                id=str(uuid.uuid4()),
                client_id=client_id,
                title=title.strip(),
                description=description.strip(),
                budget_min=budget_min,
                budget_max=budget_max,
                deadline=parsed_deadline,
                skills_required=skills_required or [],
                location=location.strip() if isinstance(location, str) else location,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e

        self._storage.apply_creation(job, self._transition(job, None, client_id))

        logger.info(f"Job request created | id={job.id} | client={client_id} | title={job.title[:50]}")
        return job

    def update_job_request(
        self,
        job_request_id: str,
        actor_id: str,
        changes: Dict[str, Any],
    ) -> JobRequest:
        """Patch a job request on behalf of its client or assigned apprentice.

        The client may edit descriptive fields; budget and deadline only
        while the job is open. The assigned apprentice may only report
        ``progress`` and, if the completion policy allows it, set
        ``status`` to completed. Status changes are routed through the
        dedicated transitions.
        """
        if not changes:
            raise ValidationError("No changes given")
        unknown = set(changes) - PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown job request fields: {sorted(unknown)}")
        protected = set(changes) & PROTECTED_FIELDS
        if protected:
            raise WrongActorError(f"Fields cannot be changed directly: {sorted(protected)}")

        job = self._load_job(job_request_id)
        is_client = actor_id == job.client_id
        is_assignee = (
            job.assigned_apprentice_id is not None and actor_id == job.assigned_apprentice_id
        )
        if not (is_client or is_assignee):
            raise WrongActorError("Only the client or the assigned apprentice can update this job")

        allowed = set(CLIENT_EDITABLE_FIELDS) if is_client else set()
        if is_assignee:
            allowed |= ASSIGNEE_EDITABLE_FIELDS
        if is_client and not is_assignee:
            allowed.add("status")
        forbidden = set(changes) - allowed
        if forbidden:
            raise WrongActorError(f"Not allowed to change fields: {sorted(forbidden)}")

        field_changes = {k: v for k, v in changes.items() if k in CLIENT_EDITABLE_FIELDS}
        with self._storage.transaction():
            if field_changes:
                job = self._apply_field_changes(job_request_id, actor_id, field_changes)
            if "progress" in changes:
                job = self.update_progress(job_request_id, actor_id, changes["progress"])
            if "status" in changes:
                job = self._apply_status_change(job_request_id, actor_id, changes["status"])
        return job

    def _apply_status_change(self, job_request_id: str, actor_id: str, status: Any) -> JobRequest:
        try:
            target = JobStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid status: {status!r}")
        if target == JobStatus.COMPLETED:
            return self.complete_job(job_request_id, actor_id)
        if target == JobStatus.CANCELLED:
            return self.cancel_job(job_request_id, actor_id)
        raise ValidationError(
            f"Status {target.value} can only be reached through its dedicated operation"
        )

    def _apply_field_changes(
        self, job_request_id: str, actor_id: str, changes: Dict[str, Any]
    ) -> JobRequest:
        with self._storage.transaction():
            job = self._load_job(job_request_id)
            if actor_id != job.client_id:
                raise WrongActorError("Only the client can edit job details")
            if job.is_terminal:
                raise WrongStateError(f"Cannot edit job request in status: {job.status}")
            open_only = set(changes) & OPEN_ONLY_FIELDS
            if open_only and not job.is_open:
                raise WrongStateError(
                    f"Fields {sorted(open_only)} can only change while the job is open"
                )

            title = changes.get("title", job.title)
            description = changes.get("description", job.description)
            self._validate_text_fields(title, description)
            self._validate_skills(changes.get("skills_required"))
            data = job.to_dict()
            data.update(changes)
            data["title"] = title.strip()
            data["description"] = description.strip()
            if "deadline" in changes:
                data["deadline"] = self._validate_deadline(changes["deadline"])
            try:
                updated = JobRequest.from_dict(data)
            except (TypeError, ValueError) as e:
                raise ValidationError(str(e)) from e

            if not self._storage.update_job(updated, expected_status=job.status):
                raise StateConflictError(
                    "Job request was modified by another request. Please refresh and try again."
                )

        logger.info(f"Job request updated | id={job_request_id} | fields={sorted(changes)}")
        return updated

    def get_job(self, job_request_id: str) -> JobRequest:
        return self._load_job(job_request_id)

    def list_jobs(self, filters: Optional[JobSearchFilters] = None) -> List[JobRequest]:
        filters = filters or JobSearchFilters()
        return self._storage.list_jobs(
            status=filters.status,
            client_id=filters.client_id,
            assigned_apprentice_id=filters.assigned_apprentice_id,
            skills=filters.skills,
            limit=filters.limit,
            offset=filters.offset,
        )

    def get_jobs_for_client(self, client_id: str, limit: int = 100) -> List[JobRequest]:
        return self._storage.list_jobs(client_id=client_id, limit=limit)

    def get_jobs_for_apprentice(self, apprentice_id: str, limit: int = 100) -> List[JobRequest]:
        return self._storage.list_jobs(assigned_apprentice_id=apprentice_id, limit=limit)

    def get_job_history(self, job_request_id: str) -> List[JobStateTransition]:
        self._load_job(job_request_id)
        transitions = self._storage.get_transitions(job_request_id)
        return sorted(transitions, key=lambda t: t.created_at or utc_now())

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def submit_application(
        self,
        job_request_id: str,
        apprentice_id: str,
        proposal: str,
    ) -> JobApplication:
        """Apply to an open job request.

        Raises:
            JobNotFoundError: Unknown job request
            JobNotOpenError: The job no longer accepts applications
            DuplicateApplicationError: This apprentice already applied
            ValidationError: Empty proposal, or the client applying to their own job
        """
        if not apprentice_id:
            raise ValidationError("apprentice_id is required")
        if not isinstance(proposal, str) or not proposal.strip():
            raise ValidationError("Application proposal cannot be empty")
        self._require_profile(apprentice_id)

        with self._storage.transaction():
            job = self._load_job(job_request_id)
            if job.client_id == apprentice_id:
                raise ValidationError("Cannot apply to your own job request")
            if not job.is_open:
                raise JobNotOpenError(
                    f"Job request is not accepting applications (status: {job.status})"
                )

            application = JobApplication(
                id=str(uuid.uuid4()),
                apprentice_id=apprentice_id,
                job_request_id=job_request_id,
                proposal=proposal.strip(),
            )
            self._storage.save_application(application)

        logger.info(f"Application submitted | job={job_request_id} | apprentice={apprentice_id}")
        return application

    def get_application(self, application_id: str) -> JobApplication:
        return self._load_application(application_id)

    def list_applications(
        self,
        job_request_id: Optional[str] = None,
        apprentice_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
        limit: int = 100,
    ) -> List[JobApplication]:
        return self._storage.list_applications(
            job_request_id=job_request_id,
            apprentice_id=apprentice_id,
            status=status,
            limit=limit,
        )

    def accept_application(
        self,
        application_id: str,
        actor_id: str,
    ) -> Tuple[JobApplication, JobRequest]:
        """Accept an application and start the job.

        The job moves open -> in_progress with the applicant assigned, the
        application moves pending -> accepted, and (by default) every other
        pending application of the job is rejected, all in one storage write.
        If another acceptance or a cancellation got there first, nothing has
        been changed.
        """
        with self._storage.transaction():
            application = self._load_application(application_id)
            job = self._load_job(application.job_request_id)

            if job.client_id != actor_id:
                raise WrongActorError("Only the job client can accept applications")
            if not job.is_open:
                raise JobNotOpenError(
                    f"Cannot accept applications for job in status: {job.status}"
                )
            if not application.is_pending:
                raise StateConflictError(f"Application is already {application.status}")

            from_status = job.status
            job.status = JobStatus.IN_PROGRESS.value
            job.assigned_apprentice_id = application.apprentice_id
            application.status = ApplicationStatus.ACCEPTED.value
            transition = self._transition(
                job,
                from_status,
                actor_id,
                application_id=application.id,
                assigned_apprentice_id=application.apprentice_id,
            )
            try:
                rejected = self._storage.apply_acceptance(
                    job,
                    application,
                    transition,
                    reject_siblings=self._config.reject_siblings_on_accept,
                )
            except JobNotOpenError:
                logger.warning(
                    f"Race condition detected on job {job.id}: acceptance of {application_id} lost"
                )
                raise

        logger.info(
            f"Application accepted | job={job.id} | apprentice={application.apprentice_id} "
            f"| rejected_siblings={rejected}"
        )
        return application, job

    def reject_application(self, application_id: str, actor_id: str) -> JobApplication:
        """Reject a pending application. The job itself is untouched."""
        with self._storage.transaction():
            application = self._load_application(application_id)
            job = self._load_job(application.job_request_id)

            if job.client_id != actor_id:
                raise WrongActorError("Only the job client can reject applications")
            if not application.is_pending:
                raise StateConflictError(f"Application is already {application.status}")

            application.status = ApplicationStatus.REJECTED.value
            if not self._storage.update_application(
                application, expected_status=ApplicationStatus.PENDING
            ):
                raise StateConflictError("Application status was modified by another request")

        logger.info(f"Application rejected | job={job.id} | application={application_id}")
        return application

    # ------------------------------------------------------------------
    # Progress and completion
    # ------------------------------------------------------------------

    def update_progress(self, job_request_id: str, actor_id: str, progress: int) -> JobRequest:
        """Report progress on an in-progress job.

        Raises:
            WrongActorError: Actor is not the assigned apprentice
            InvalidProgressError: Progress outside [0, 100]
            WrongStateError: Job is not in progress
        """
        with self._storage.transaction():
            job = self._load_job(job_request_id)
            if job.assigned_apprentice_id is None or job.assigned_apprentice_id != actor_id:
                raise WrongActorError("Only the assigned apprentice can update progress")
            progress = self._validate_progress(progress)
            if not job.is_in_progress:
                raise WrongStateError(f"Cannot update progress of job in status: {job.status}")

            job.progress = progress
            if not self._storage.update_job(job, expected_status=JobStatus.IN_PROGRESS):
                raise WrongStateError("Job status changed while updating progress")

        logger.info(f"Progress updated | job={job_request_id} | progress={progress}")
        return job

    def _can_complete(self, job: JobRequest, actor_id: str) -> bool:
        if actor_id == job.client_id:
            return self._config.client_can_complete
        if actor_id == job.assigned_apprentice_id:
            return self._config.apprentice_can_complete
        return False

    def complete_job(
        self,
        job_request_id: str,
        actor_id: str,
        earnings: Optional[int] = None,
    ) -> JobRequest:
        """Complete an in-progress job and credit the apprentice.

        The profile credit (``earnings``, defaulting to ``budget_max``) is
        recorded in the outbox by the same storage write as the status
        change, then relayed to the profile store. A relay failure leaves
        the credit pending for ``flush_profile_stats``.
        """
        with self._storage.transaction():
            job = self._load_job(job_request_id)
            if not self._can_complete(job, actor_id):
                raise WrongActorError(
                    f"Completion policy '{self._config.completion_policy.value}' "
                    "does not allow this actor to complete the job"
                )
            if not job.is_in_progress or job.assigned_apprentice_id is None:
                raise WrongStateError(f"Cannot complete job in status: {job.status}")

            if earnings is None:
                earnings = job.budget_max
            if isinstance(earnings, bool) or not isinstance(earnings, int):
                raise ValidationError("earnings must be an integer")
            if not job.budget_min <= earnings <= job.budget_max:
                raise ValidationError(
                    f"earnings must be within the budget ({job.budget_min}-{job.budget_max})"
                )

            from_status = job.status
            job.status = JobStatus.COMPLETED.value
            job.progress = MAX_PROGRESS
            job.completed_at = utc_now()
            credit = ProfileStatsUpdate(
                id=str(uuid.uuid4()),
                job_request_id=job.id,
                profile_id=job.assigned_apprentice_id,
                earnings=earnings,
            )
            self._storage.apply_completion(
                job, credit, self._transition(job, from_status, actor_id, earnings=earnings)
            )

        logger.info(
            f"Job completed | id={job.id} | apprentice={job.assigned_apprentice_id} "
            f"| earnings={earnings}"
        )

        if self._relay is not None and self._config.relay_on_complete:
            self._relay.relay(credit)
        return job

    def flush_profile_stats(self, limit: int = 100) -> Dict[str, int]:
        """Retry pending profile credits. Returns applied/failed counts."""
        if self._relay is None:
            raise RuntimeError("No profile store configured")
        return self._relay.flush(limit=limit)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_job(self, job_request_id: str, actor_id: str) -> JobRequest:
        """Cancel an open or in-progress job. Pending applications are rejected."""
        with self._storage.transaction():
            job = self._load_job(job_request_id)
            if job.client_id != actor_id:
                raise WrongActorError("Only the job client can cancel")
            if not job.can_transition_to(JobStatus.CANCELLED):
                raise WrongStateError(f"Cannot cancel job in status: {job.status}")

            from_status = job.status
            job.status = JobStatus.CANCELLED.value
            self._storage.apply_cancellation(
                job,
                self._transition(job, from_status, actor_id),
                expected_status=JobStatus(from_status),
            )

        logger.info(f"Job cancelled | id={job.id} | client={actor_id} | from={from_status}")
        return job
