"""Pydantic models for API requests and responses."""

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from craftiva.jobs import JobApplication, JobRequest, JobStateTransition

JobStatus = Literal["open", "in_progress", "completed", "cancelled"]
ApplicationStatus = Literal["pending", "accepted", "rejected"]


def _normalize_skills(v: list[str] | None) -> list[str] | None:
    if v is None:
        return None
    return [s.lower().strip() for s in v if s and s.strip()]


# =============================================================================
# Job Request Models
# =============================================================================

class JobRequestCreate(BaseModel):
    """Request to post a job."""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    budget_min: int = Field(..., ge=0)
    budget_max: int = Field(..., ge=0)
    deadline: date
    skills_required: list[str] = Field(default_factory=list)
    location: str | None = None

    @field_validator("skills_required")
    @classmethod
    def validate_skills(cls, v: list[str]) -> list[str]:
        return _normalize_skills(v) or []

    @model_validator(mode="after")
    def check_budget_range(self) -> "JobRequestCreate":
        if self.budget_min > self.budget_max:
            raise ValueError("budget_min cannot exceed budget_max")
        return self


class JobRequestUpdate(BaseModel):
    """Partial update of a job request. Only the fields sent are changed."""
    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, min_length=1)
    budget_min: int | None = Field(None, ge=0)
    budget_max: int | None = Field(None, ge=0)
    deadline: date | None = None
    skills_required: list[str] | None = None
    location: str | None = None
    progress: int | None = Field(None, ge=0, le=100)
    status: JobStatus | None = None

    @field_validator("skills_required")
    @classmethod
    def validate_skills(cls, v: list[str] | None) -> list[str] | None:
        return _normalize_skills(v)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ProgressUpdate(BaseModel):
    """Progress report from the assigned apprentice."""
    progress: int = Field(..., ge=0, le=100)


class CompleteJobRequest(BaseModel):
    """Completion request; earnings default to the top of the budget."""
    earnings: int | None = Field(None, ge=0)


class JobRequestResponse(BaseModel):
    """Job request details."""
    id: str
    client_id: str
    title: str
    description: str
    budget_min: int
    budget_max: int
    deadline: date
    skills_required: list[str]
    location: str | None = None
    status: JobStatus
    assigned_apprentice_id: str | None = None
    progress: int
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_job(cls, job: JobRequest) -> "JobRequestResponse":
        return cls(
            id=job.id,
            client_id=job.client_id,
            title=job.title,
            description=job.description,
            budget_min=job.budget_min,
            budget_max=job.budget_max,
            deadline=job.deadline,
            skills_required=list(job.skills_required),
            location=job.location,
            status=job.status,
            assigned_apprentice_id=job.assigned_apprentice_id,
            progress=job.progress,
            completed_at=job.completed_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobRequestListResponse(BaseModel):
    """Page of job requests."""
    jobs: list[JobRequestResponse]
    count: int = Field(..., description="Number of jobs in this page")
    limit: int
    offset: int


class JobTransitionResponse(BaseModel):
    """One entry of a job's history."""
    id: str
    job_request_id: str
    from_status: str | None = None
    to_status: str
    actor_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    @classmethod
    def from_transition(cls, transition: JobStateTransition) -> "JobTransitionResponse":
        return cls(
            id=transition.id,
            job_request_id=transition.job_request_id,
            from_status=transition.from_status,
            to_status=transition.to_status,
            actor_id=transition.actor_id,
            metadata=dict(transition.metadata or {}),
            created_at=transition.created_at,
        )


# =============================================================================
# Application Models
# =============================================================================

class JobApplicationCreate(BaseModel):
    """Request to apply to a job."""
    proposal: str = Field(..., min_length=1)


class JobApplicationResponse(BaseModel):
    """Job application details."""
    id: str
    apprentice_id: str
    job_request_id: str
    proposal: str
    status: ApplicationStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_application(cls, app: JobApplication) -> "JobApplicationResponse":
        return cls(
            id=app.id,
            apprentice_id=app.apprentice_id,
            job_request_id=app.job_request_id,
            proposal=app.proposal,
            status=app.status,
            created_at=app.created_at,
            updated_at=app.updated_at,
        )


class JobApplicationListResponse(BaseModel):
    """List of applications."""
    applications: list[JobApplicationResponse]
    count: int = Field(..., description="Number of applications returned")


class AcceptApplicationResponse(BaseModel):
    """Accepted application together with the job it started."""
    application: JobApplicationResponse
    job: JobRequestResponse


# =============================================================================
# Errors
# =============================================================================

class ErrorResponse(BaseModel):
    """Body of every marketplace error response."""
    detail: str
    error: str
