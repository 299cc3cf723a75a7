"""Job request routes.

Every handler resolves the caller from the bearer token and goes through
the marketplace facade, which applies the access policy before touching
any row. Marketplace errors are mapped to HTTP responses in ``app.main``.
"""

from fastapi import APIRouter, Query, Request, status

from craftiva.logging_config import get_logger

from ..auth import CurrentActor
from ..database import MarketplaceDep
from ..models import (
    ApplicationStatus,
    CompleteJobRequest,
    JobApplicationCreate,
    JobApplicationListResponse,
    JobApplicationResponse,
    JobRequestCreate,
    JobRequestListResponse,
    JobRequestResponse,
    JobRequestUpdate,
    JobStatus,
    JobTransitionResponse,
    ProgressUpdate,
)
from ..rate_limit import limiter

logger = get_logger("backend.jobs")
router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=JobRequestResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_job_request(
    request: Request,
    body: JobRequestCreate,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
):
    """
    Post a job request.

    The authenticated user becomes the client. Jobs start 'open' and
    accept applications until one is accepted or the job is cancelled.
    """
    logger.info(f"POST /jobs | client={actor.id} | title={body.title[:50]}")
    job = marketplace.create_job_request(
        actor,
        title=body.title,
        description=body.description,
        budget_min=body.budget_min,
        budget_max=body.budget_max,
        deadline=body.deadline,
        skills_required=body.skills_required,
        location=body.location,
    )
    return JobRequestResponse.from_job(job)


@router.get("", response_model=JobRequestListResponse)
@limiter.limit("60/minute")
async def list_job_requests(
    request: Request,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
    status_filter: JobStatus | None = Query(None, alias="status"),
    skills: list[str] | None = Query(None),
    mine: bool = Query(False, description="Only show jobs I posted or am assigned to"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """
    List job requests visible to the caller.

    Filters:
    - status: Filter by job status
    - skills: Jobs requiring ANY of the given skills
    - mine: Only jobs where you're the client or the assigned apprentice
    """
    logger.info(f"GET /jobs | actor={actor.id} | status={status_filter} | mine={mine}")
    jobs = marketplace.list_jobs(
        actor,
        status=status_filter,
        skills=skills,
        mine=mine,
        limit=limit,
        offset=offset,
    )
    return JobRequestListResponse(
        jobs=[JobRequestResponse.from_job(j) for j in jobs],
        count=len(jobs),
        limit=limit,
        offset=offset,
    )


@router.get("/{job_id}", response_model=JobRequestResponse)
@limiter.limit("60/minute")
async def get_job_request(
    request: Request,
    job_id: str,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
):
    """Get a job request by ID."""
    return JobRequestResponse.from_job(marketplace.get_job(actor, job_id))


@router.patch("/{job_id}", response_model=JobRequestResponse)
@limiter.limit("30/minute")
async def update_job_request(
    request: Request,
    job_id: str,
    body: JobRequestUpdate,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
):
    """
    Update a job request.

    The client may edit the listing (budget and deadline only while open)
    and cancel or complete it. The assigned apprentice may report progress.
    """
    changes = body.changes()
    logger.info(f"PATCH /jobs/{job_id} | actor={actor.id} | fields={sorted(changes)}")
    job = marketplace.update_job_request(actor, job_id, changes)
    return JobRequestResponse.from_job(job)


@router.post("/{job_id}/progress", response_model=JobRequestResponse)
@limiter.limit("30/minute")
async def update_job_progress(
    request: Request,
    job_id: str,
    body: ProgressUpdate,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
):
    """Report progress (0-100) on an in-progress job. Assigned apprentice only."""
    logger.info(f"POST /jobs/{job_id}/progress | actor={actor.id} | progress={body.progress}")
    job = marketplace.update_progress(actor, job_id, body.progress)
    return JobRequestResponse.from_job(job)


@router.post("/{job_id}/complete", response_model=JobRequestResponse)
@limiter.limit("10/minute")
async def complete_job_request(
    request: Request,
    job_id: str,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
    body: CompleteJobRequest | None = None,
):
    """Mark an in-progress job completed and credit the apprentice."""
    earnings = body.earnings if body else None
    logger.info(f"POST /jobs/{job_id}/complete | actor={actor.id} | earnings={earnings}")
    job = marketplace.complete_job(actor, job_id, earnings=earnings)
    return JobRequestResponse.from_job(job)


@router.post("/{job_id}/cancel", response_model=JobRequestResponse)
@limiter.limit("10/minute")
async def cancel_job_request(
    request: Request,
    job_id: str,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
):
    """Cancel an open or in-progress job. Client only."""
    logger.info(f"POST /jobs/{job_id}/cancel | actor={actor.id}")
    job = marketplace.cancel_job(actor, job_id)
    return JobRequestResponse.from_job(job)


@router.get("/{job_id}/history", response_model=list[JobTransitionResponse])
@limiter.limit("60/minute")
async def get_job_request_history(
    request: Request,
    job_id: str,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
):
    """State transitions of a job, oldest first. Client or assigned apprentice only."""
    transitions = marketplace.get_job_history(actor, job_id)
    return [JobTransitionResponse.from_transition(t) for t in transitions]


# =============================================================================
# Applications on a job
# =============================================================================


@router.post(
    "/{job_id}/applications",
    response_model=JobApplicationResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("20/minute")
async def apply_to_job(
    request: Request,
    job_id: str,
    body: JobApplicationCreate,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
):
    """Apply to an open job. One application per apprentice and job."""
    logger.info(f"POST /jobs/{job_id}/applications | apprentice={actor.id}")
    application = marketplace.submit_application(actor, job_id, body.proposal)
    return JobApplicationResponse.from_application(application)


@router.get("/{job_id}/applications", response_model=JobApplicationListResponse)
@limiter.limit("60/minute")
async def list_job_applications(
    request: Request,
    job_id: str,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
    status_filter: ApplicationStatus | None = Query(None, alias="status"),
):
    """All applications for the job's client; your own application otherwise."""
    applications = marketplace.list_applications_for_job(actor, job_id, status=status_filter)
    return JobApplicationListResponse(
        applications=[JobApplicationResponse.from_application(a) for a in applications],
        count=len(applications),
    )
