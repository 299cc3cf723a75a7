"""Marketplace entry point.

Every external request goes through :class:`Marketplace`: it loads the row
snapshot, asks the access policy, and only then calls the lifecycle
service. Nothing is written before the policy has allowed the request.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from craftiva.config import MarketplaceConfig
from craftiva.errors import (
    ApplicationNotFoundError,
    AuthorizationError,
    JobNotFoundError,
    ValidationError,
)
from craftiva.jobs.models import (
    ApplicationStatus,
    JobApplication,
    JobRequest,
    JobStateTransition,
    JobStatus,
)
from craftiva.jobs.service import JobSearchFilters, JobService
from craftiva.jobs.storage import JobStorage, status_value
from craftiva.policy import (
    Actor,
    Operation,
    Row,
    is_allowed,
    require,
    visible_applications,
    visible_jobs,
)
from craftiva.profiles import ProfileStore

logger = logging.getLogger(__name__)

_DRAFT_ID = "draft"


class Marketplace:
    """Policy-checked facade over :class:`JobService`."""

    def __init__(
        self,
        storage: JobStorage,
        config: Optional[MarketplaceConfig] = None,
        profiles: Optional[ProfileStore] = None,
        service: Optional[JobService] = None,
    ):
        self._config = config or MarketplaceConfig()
        self._service = service or JobService(storage, config=self._config, profiles=profiles)

    @property
    def service(self) -> JobService:
        return self._service

    @property
    def config(self) -> MarketplaceConfig:
        return self._config

    # ------------------------------------------------------------------
    # Policy plumbing
    # ------------------------------------------------------------------

    def _guard(
        self,
        actor: Actor,
        operation: Operation,
        row: Row,
        job: Optional[JobRequest] = None,
    ) -> None:
        """Enforce the policy for ``operation`` on an existing row.

        With ``conceal_forbidden_rows`` an actor who cannot even read the
        row gets the same not-found error as for a missing row.
        """
        if is_allowed(actor, operation, row, job):
            return
        if self._config.conceal_forbidden_rows and not is_allowed(
            actor, Operation.READ, row, job
        ):
            raise self._not_found(row)
        require(actor, operation, row, job)

    @staticmethod
    def _not_found(row: Row) -> Exception:
        if isinstance(row, JobRequest):
            return JobNotFoundError(f"Job request {row.id} not found")
        return ApplicationNotFoundError(f"Application {row.id} not found")

    def _job(self, job_request_id: str) -> JobRequest:
        return self._service.get_job(job_request_id)

    def _application(self, application_id: str) -> Tuple[JobApplication, JobRequest]:
        application = self._service.get_application(application_id)
        job = self._service.get_job(application.job_request_id)
        return application, job

    # ------------------------------------------------------------------
    # Job requests
    # ------------------------------------------------------------------

    def create_job_request(
        self,
        actor: Actor,
        title: str,
        description: str,
        budget_min: int,
        budget_max: int,
        deadline: date,
        skills_required: Optional[List[str]] = None,
        location: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> JobRequest:
        """Post a job request. ``client_id`` defaults to the actor."""
        client_id = client_id or actor.id
        try:
            draft = JobRequest(
                id=_DRAFT_ID,
                client_id=client_id,
                title=title,
                description=description,
                budget_min=budget_min,
                budget_max=budget_max,
                deadline=deadline,
                skills_required=skills_required or [],
                location=location,
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e)) from e
        require(actor, Operation.CREATE, draft)

        return self._service.create_job_request(
            client_id=client_id,
            title=title,
            description=description,
            budget_min=budget_min,
            budget_max=budget_max,
            deadline=deadline,
            skills_required=skills_required,
            location=location,
        )

    def get_job(self, actor: Actor, job_request_id: str) -> JobRequest:
        job = self._job(job_request_id)
        self._guard(actor, Operation.READ, job)
        return job

    def list_jobs(
        self,
        actor: Actor,
        status: Optional[JobStatus] = None,
        skills: Optional[List[str]] = None,
        mine: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[JobRequest]:
        """List the job requests ``actor`` may see.

        ``mine`` restricts the listing to jobs the actor posted or is
        assigned to. Paging applies to the readable rows only: each
        readable scope (open, posted, assigned) is fetched up to
        ``offset + limit`` rows, merged newest first, then sliced.
        """
        window = limit + offset
        scopes = [
            JobSearchFilters(status=status, client_id=actor.id, skills=skills, limit=window),
            JobSearchFilters(
                status=status, assigned_apprentice_id=actor.id, skills=skills, limit=window
            ),
        ]
        if not mine and status_value(status) in (None, JobStatus.OPEN.value):
            scopes.append(JobSearchFilters(status=JobStatus.OPEN, skills=skills, limit=window))

        merged: Dict[str, JobRequest] = {}
        for filters in scopes:
            for job in self._service.list_jobs(filters):
                merged.setdefault(job.id, job)
        jobs = sorted(merged.values(), key=lambda j: j.created_at, reverse=True)
        return visible_jobs(actor, jobs)[offset : offset + limit]

    def update_job_request(
        self, actor: Actor, job_request_id: str, changes: Dict[str, Any]
    ) -> JobRequest:
        self._guard(actor, Operation.UPDATE, self._job(job_request_id))
        return self._service.update_job_request(job_request_id, actor.id, changes)

    def update_progress(self, actor: Actor, job_request_id: str, progress: int) -> JobRequest:
        self._guard(actor, Operation.UPDATE, self._job(job_request_id))
        return self._service.update_progress(job_request_id, actor.id, progress)

    def complete_job(
        self, actor: Actor, job_request_id: str, earnings: Optional[int] = None
    ) -> JobRequest:
        self._guard(actor, Operation.UPDATE, self._job(job_request_id))
        return self._service.complete_job(job_request_id, actor.id, earnings=earnings)

    def cancel_job(self, actor: Actor, job_request_id: str) -> JobRequest:
        self._guard(actor, Operation.UPDATE, self._job(job_request_id))
        return self._service.cancel_job(job_request_id, actor.id)

    def get_job_history(self, actor: Actor, job_request_id: str) -> List[JobStateTransition]:
        job = self._job(job_request_id)
        self._guard(actor, Operation.READ, job)
        if actor.id not in (job.client_id, job.assigned_apprentice_id):
            raise AuthorizationError("Only the client or the assigned apprentice can view history")
        return self._service.get_job_history(job_request_id)

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def submit_application(
        self,
        actor: Actor,
        job_request_id: str,
        proposal: str,
        apprentice_id: Optional[str] = None,
    ) -> JobApplication:
        """Apply to a job. ``apprentice_id`` defaults to the actor."""
        job = self._job(job_request_id)
        self._guard(actor, Operation.READ, job)

        apprentice_id = apprentice_id or actor.id
        try:
            draft = JobApplication(
                id=_DRAFT_ID,
                apprentice_id=apprentice_id,
                job_request_id=job_request_id,
                proposal=proposal,
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e)) from e
        require(actor, Operation.CREATE, draft, job)

        return self._service.submit_application(job_request_id, apprentice_id, proposal)

    def get_application(self, actor: Actor, application_id: str) -> JobApplication:
        application, job = self._application(application_id)
        self._guard(actor, Operation.READ, application, job)
        return application

    def list_applications_for_job(
        self,
        actor: Actor,
        job_request_id: str,
        status: Optional[ApplicationStatus] = None,
    ) -> List[JobApplication]:
        """Applications of one job: all of them for the client, the
        actor's own for anyone else."""
        job = self._job(job_request_id)
        self._guard(actor, Operation.READ, job)
        applications = self._service.list_applications(job_request_id=job_request_id, status=status)
        return visible_applications(actor, applications, {job.id: job})

    def list_my_applications(
        self, actor: Actor, status: Optional[ApplicationStatus] = None
    ) -> List[JobApplication]:
        return self._service.list_applications(apprentice_id=actor.id, status=status)

    def accept_application(
        self, actor: Actor, application_id: str
    ) -> Tuple[JobApplication, JobRequest]:
        application, job = self._application(application_id)
        self._guard(actor, Operation.UPDATE, application, job)
        return self._service.accept_application(application_id, actor.id)

    def reject_application(self, actor: Actor, application_id: str) -> JobApplication:
        application, job = self._application(application_id)
        self._guard(actor, Operation.UPDATE, application, job)
        return self._service.reject_application(application_id, actor.id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def flush_profile_stats(self, limit: int = 100) -> Dict[str, int]:
        return self._service.flush_profile_stats(limit=limit)
