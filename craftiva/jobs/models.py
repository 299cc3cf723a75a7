"""
Job marketplace data models.

JobRequest and JobApplication mirror the ``job_requests`` and
``job_applications`` tables. Field names and status values are part of the
wire contract and must not change.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class JobStatus(str, Enum):
    """Job request lifecycle status."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ApplicationStatus(str, Enum):
    """Job application status."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# open --accept--> in_progress --complete--> completed
# open / in_progress --cancel--> cancelled
VALID_JOB_TRANSITIONS: Dict[JobStatus, set] = {
    JobStatus.OPEN: {JobStatus.IN_PROGRESS, JobStatus.CANCELLED},
    JobStatus.IN_PROGRESS: {JobStatus.COMPLETED, JobStatus.CANCELLED},
    JobStatus.COMPLETED: set(),
    JobStatus.CANCELLED: set(),
}

TERMINAL_JOB_STATUSES = frozenset(
    status for status, targets in VALID_JOB_TRANSITIONS.items() if not targets
)

VALID_JOB_STATUS_VALUES = frozenset(s.value for s in JobStatus)
VALID_APPLICATION_STATUS_VALUES = frozenset(s.value for s in ApplicationStatus)

MIN_PROGRESS = 0
MAX_PROGRESS = 100


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Union[None, str, datetime]) -> Optional[datetime]:
    """Parse an ISO timestamp as returned by PostgREST."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_date(value: Union[None, str, date, datetime]) -> Optional[date]:
    """Parse a calendar date. Timestamps are truncated to their date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if "T" in value or " " in value.strip():
        return parse_datetime(value).date()
    return date.fromisoformat(value)


def _iso(value: Optional[Union[date, datetime]]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _status_value(status: Union[str, Enum]) -> str:
    return status.value if isinstance(status, Enum) else status


def normalize_skills(skills: Optional[List[str]]) -> List[str]:
    """Lower-case, strip and de-duplicate skill tags, keeping first-seen order."""
    seen = []
    for skill in skills or []:
        if not isinstance(skill, str):
            raise ValueError(f"Skill tags must be strings, got {type(skill).__name__}")
        tag = skill.strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


@dataclass
class JobRequest:
    """A job posted by a client.

    Attributes:
        id: Unique identifier
        client_id: Profile that posted the job (immutable)
        title: Short title, at most 200 characters
        description: Full description of the work
        budget_min: Lower bound of the budget
        budget_max: Upper bound of the budget
        deadline: Calendar date the work is due
        skills_required: Skill tags, may be empty
        location: Optional location text
        status: Lifecycle status
        assigned_apprentice_id: Apprentice whose application was accepted
        progress: Completion percentage in [0, 100]
        completed_at: Set exactly when status becomes completed
    """

    id: str
    client_id: str
    title: str
    description: str
    budget_min: int
    budget_max: int
    deadline: date
    skills_required: List[str] = field(default_factory=list)
    location: Optional[str] = None
    status: str = JobStatus.OPEN.value
    assigned_apprentice_id: Optional[str] = None
    progress: int = 0
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = _status_value(self.status)
        if self.status not in VALID_JOB_STATUS_VALUES:
            raise ValueError(
                f"Invalid status: {self.status}. Must be one of: {sorted(VALID_JOB_STATUS_VALUES)}"
            )

        if not self.client_id:
            raise ValueError("client_id is required")
        if not isinstance(self.title, str) or not self.title.strip():
            raise ValueError("Job title cannot be empty")
        if not isinstance(self.description, str) or not self.description.strip():
            raise ValueError("Job description cannot be empty")

        for name in ("budget_min", "budget_max", "progress"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer")
        if self.budget_min < 0:
            raise ValueError("budget_min cannot be negative")
        if self.budget_min > self.budget_max:
            raise ValueError("budget_min cannot exceed budget_max")
        if not MIN_PROGRESS <= self.progress <= MAX_PROGRESS:
            raise ValueError(f"progress must be between {MIN_PROGRESS} and {MAX_PROGRESS}")

        if self.deadline is None:
            raise ValueError("deadline is required")
        self.deadline = parse_date(self.deadline)
        self.skills_required = normalize_skills(self.skills_required)
        if self.location is not None and not isinstance(self.location, str):
            raise ValueError("location must be a string")
        if self.location is not None and not self.location.strip():
            self.location = None

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)

    @property
    def is_open(self) -> bool:
        """Open jobs are publicly visible and accept applications."""
        return self.status == JobStatus.OPEN.value

    @property
    def is_in_progress(self) -> bool:
        return self.status == JobStatus.IN_PROGRESS.value

    @property
    def is_terminal(self) -> bool:
        """Terminal jobs accept no further transitions or mutations."""
        return self.job_status in TERMINAL_JOB_STATUSES

    def can_transition_to(self, new_status: Union[JobStatus, str]) -> bool:
        """Check if the job can move to ``new_status``."""
        target = JobStatus(_status_value(new_status))
        return target in VALID_JOB_TRANSITIONS[self.job_status]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the wire field names."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "title": self.title,
            "description": self.description,
            "budget_min": self.budget_min,
            "budget_max": self.budget_max,
            "skills_required": list(self.skills_required),
            "location": self.location,
            "deadline": _iso(self.deadline),
            "status": self.status,
            "assigned_apprentice_id": self.assigned_apprentice_id,
            "progress": self.progress,
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobRequest":
        return cls(
            id=data["id"],
            client_id=data["client_id"],
            title=data["title"],
            description=data["description"],
            budget_min=data["budget_min"],
            budget_max=data["budget_max"],
            deadline=parse_date(data["deadline"]),
            skills_required=data.get("skills_required") or [],
            location=data.get("location"),
            status=data.get("status", JobStatus.OPEN.value),
            assigned_apprentice_id=data.get("assigned_apprentice_id"),
            progress=data.get("progress", 0) or 0,
            completed_at=parse_datetime(data.get("completed_at")),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass
class JobApplication:
    """An apprentice's application to work on a job request."""

    id: str
    apprentice_id: str
    job_request_id: str
    proposal: str
    status: str = ApplicationStatus.PENDING.value
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = _status_value(self.status)
        if self.status not in VALID_APPLICATION_STATUS_VALUES:
            raise ValueError(
                f"Invalid status: {self.status}. "
                f"Must be one of: {sorted(VALID_APPLICATION_STATUS_VALUES)}"
            )
        if not self.apprentice_id:
            raise ValueError("apprentice_id is required")
        if not self.job_request_id:
            raise ValueError("job_request_id is required")
        if not isinstance(self.proposal, str) or not self.proposal.strip():
            raise ValueError("Application proposal cannot be empty")

    @property
    def is_pending(self) -> bool:
        return self.status == ApplicationStatus.PENDING.value

    @property
    def is_accepted(self) -> bool:
        return self.status == ApplicationStatus.ACCEPTED.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "apprentice_id": self.apprentice_id,
            "job_request_id": self.job_request_id,
            "proposal": self.proposal,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobApplication":
        return cls(
            id=data["id"],
            apprentice_id=data["apprentice_id"],
            job_request_id=data["job_request_id"],
            proposal=data["proposal"],
            status=data.get("status", ApplicationStatus.PENDING.value),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass
class JobStateTransition:
    """Audit log entry for a job status change.

    ``from_status`` is None for the creation entry.
    """

    id: str
    job_request_id: str
    to_status: str
    actor_id: str
    from_status: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.to_status = _status_value(self.to_status)
        if self.from_status is not None:
            self.from_status = _status_value(self.from_status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_request_id": self.job_request_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "metadata": dict(self.metadata),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobStateTransition":
        return cls(
            id=data["id"],
            job_request_id=data["job_request_id"],
            from_status=data.get("from_status"),
            to_status=data["to_status"],
            actor_id=data["actor_id"],
            metadata=data.get("metadata") or {},
            created_at=parse_datetime(data.get("created_at")),
        )


@dataclass
class ProfileStatsUpdate:
    """Pending credit to an apprentice's profile aggregates.

    Written in the same transaction that completes the job, so a completed
    job always has its credit recorded even if the profile update itself
    fails. ``applied_at`` stays None until the credit reaches the profile.
    """

    id: str
    job_request_id: str
    profile_id: str
    earnings: int
    applied_at: Optional[datetime] = None
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.earnings, bool) or not isinstance(self.earnings, int):
            raise ValueError("earnings must be an integer")
        if self.earnings < 0:
            raise ValueError("earnings cannot be negative")

    @property
    def is_pending(self) -> bool:
        return self.applied_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_request_id": self.job_request_id,
            "profile_id": self.profile_id,
            "earnings": self.earnings,
            "applied_at": _iso(self.applied_at),
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfileStatsUpdate":
        return cls(
            id=data["id"],
            job_request_id=data["job_request_id"],
            profile_id=data["profile_id"],
            earnings=data["earnings"],
            applied_at=parse_datetime(data.get("applied_at")),
            attempts=data.get("attempts", 0) or 0,
            last_error=data.get("last_error"),
            created_at=parse_datetime(data.get("created_at")),
        )
