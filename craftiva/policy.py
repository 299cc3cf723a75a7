"""Row-level access policy for job requests and applications.

``authorize(actor, operation, row, job=None)`` is a pure function: it looks
only at the actor and the row snapshot (plus the parent job request when
the row is an application) and returns ALLOW or DENY. A request is allowed
when any rule for its operation matches. Rule names follow the policies
declared on the database tables.

Usage:
    from craftiva.policy import Actor, Operation, authorize

    decision = authorize(Actor("user-1"), Operation.READ, job)
    if decision is Decision.DENY:
        ...

Which *fields* an update may touch is not decided here; the lifecycle
service restricts the assigned apprentice to progress reporting.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from craftiva.errors import AuthorizationError
from craftiva.jobs.models import JobApplication, JobRequest

logger = logging.getLogger(__name__)

Row = Union[JobRequest, JobApplication]


@dataclass(frozen=True)
class Actor:
    """An authenticated identity; ``id`` is the actor's profile id."""

    id: str

    def __post_init__(self):
        if not self.id:
            raise ValueError("Actor id cannot be empty")


class Operation(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class PolicyRule:
    """A named permissive rule for one (row type, operation) pair."""

    name: str
    row_type: type
    operation: Operation
    check: Callable[[Actor, Row, Optional[JobRequest]], bool]


def _parent_client(app: JobApplication, job: Optional[JobRequest]) -> Optional[str]:
    if job is None or job.id != app.job_request_id:
        return None
    return job.client_id


POLICY_RULES: Tuple[PolicyRule, ...] = (
    # job_requests
    PolicyRule(
        "Users can view all open job requests",
        JobRequest,
        Operation.READ,
        lambda actor, row, job: row.is_open,
    ),
    PolicyRule(
        "Users can view their own job requests",
        JobRequest,
        Operation.READ,
        lambda actor, row, job: actor.id == row.client_id,
    ),
    PolicyRule(
        "Users can view jobs they are assigned to",
        JobRequest,
        Operation.READ,
        lambda actor, row, job: actor.id == row.assigned_apprentice_id,
    ),
    PolicyRule(
        "Users can create job requests",
        JobRequest,
        Operation.CREATE,
        lambda actor, row, job: actor.id == row.client_id,
    ),
    PolicyRule(
        "Users can update their own job requests",
        JobRequest,
        Operation.UPDATE,
        lambda actor, row, job: actor.id == row.client_id,
    ),
    PolicyRule(
        "Assigned apprentices can update job progress",
        JobRequest,
        Operation.UPDATE,
        lambda actor, row, job: actor.id == row.assigned_apprentice_id,
    ),
    # job_applications
    PolicyRule(
        "Users can view their own applications",
        JobApplication,
        Operation.READ,
        lambda actor, row, job: actor.id == row.apprentice_id,
    ),
    PolicyRule(
        "Job owners can view applications for their jobs",
        JobApplication,
        Operation.READ,
        lambda actor, row, job: actor.id == _parent_client(row, job),
    ),
    PolicyRule(
        "Users can create applications",
        JobApplication,
        Operation.CREATE,
        lambda actor, row, job: actor.id == row.apprentice_id,
    ),
    PolicyRule(
        "Job owners can update application status",
        JobApplication,
        Operation.UPDATE,
        lambda actor, row, job: actor.id == _parent_client(row, job),
    ),
)


def matching_rules(
    actor: Actor,
    operation: Operation,
    row: Row,
    job: Optional[JobRequest] = None,
    rules: Iterable[PolicyRule] = POLICY_RULES,
) -> List[str]:
    """Names of the rules that allow ``operation`` on ``row``."""
    operation = Operation(operation)
    return [
        rule.name
        for rule in rules
        if rule.operation == operation
        and isinstance(row, rule.row_type)
        and rule.check(actor, row, job)
    ]


def authorize(
    actor: Actor,
    operation: Operation,
    row: Row,
    job: Optional[JobRequest] = None,
) -> Decision:
    """Decide whether ``actor`` may perform ``operation`` on ``row``.

    For applications, ``job`` must be the job request the application
    points at; rules that depend on the job's client fail closed without it.
    DELETE has no rule and is always denied: rows are only removed by
    cascade when a profile is deleted.
    """
    if matching_rules(actor, operation, row, job):
        return Decision.ALLOW
    logger.debug(
        "Policy denied | actor=%s | operation=%s | row=%s:%s",
        actor.id,
        Operation(operation).value,
        type(row).__name__,
        getattr(row, "id", None),
    )
    return Decision.DENY


def is_allowed(
    actor: Actor,
    operation: Operation,
    row: Row,
    job: Optional[JobRequest] = None,
) -> bool:
    return authorize(actor, operation, row, job) is Decision.ALLOW


def require(
    actor: Actor,
    operation: Operation,
    row: Row,
    job: Optional[JobRequest] = None,
) -> None:
    """Raise AuthorizationError unless ``authorize`` allows the request."""
    if not is_allowed(actor, operation, row, job):
        operation = Operation(operation)
        raise AuthorizationError(
            f"Not allowed to {operation.value} this {_row_label(row)}"
        )


def _row_label(row: Row) -> str:
    return "job request" if isinstance(row, JobRequest) else "job application"


def visible_jobs(actor: Actor, jobs: Iterable[JobRequest]) -> List[JobRequest]:
    """Filter a job listing down to the rows ``actor`` may read."""
    return [job for job in jobs if is_allowed(actor, Operation.READ, job)]


def visible_applications(
    actor: Actor,
    applications: Iterable[JobApplication],
    jobs_by_id: Mapping[str, JobRequest],
) -> List[JobApplication]:
    """Filter applications down to the rows ``actor`` may read.

    ``jobs_by_id`` maps job request ids to the parent rows.
    """
    return [
        app
        for app in applications
        if is_allowed(actor, Operation.READ, app, jobs_by_id.get(app.job_request_id))
    ]


def describe_policies() -> Dict[str, List[str]]:
    """Rule names grouped by ``<table>.<operation>``, for docs and diagnostics."""
    grouped: Dict[str, List[str]] = {}
    for rule in POLICY_RULES:
        table = "job_requests" if rule.row_type is JobRequest else "job_applications"
        grouped.setdefault(f"{table}.{rule.operation.value}", []).append(rule.name)
    return grouped
