"""Job application routes."""

from fastapi import APIRouter, Query, Request

from craftiva.logging_config import get_logger

from ..auth import CurrentActor
from ..database import MarketplaceDep
from ..models import (
    AcceptApplicationResponse,
    ApplicationStatus,
    JobApplicationListResponse,
    JobApplicationResponse,
    JobRequestResponse,
)
from ..rate_limit import limiter

logger = get_logger("backend.applications")
router = APIRouter(prefix="/applications", tags=["applications"])


@router.get("/mine", response_model=JobApplicationListResponse)
@limiter.limit("60/minute")
async def list_my_applications(
    request: Request,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
    status_filter: ApplicationStatus | None = Query(None, alias="status"),
):
    """Applications submitted by the caller."""
    applications = marketplace.list_my_applications(actor, status=status_filter)
    return JobApplicationListResponse(
        applications=[JobApplicationResponse.from_application(a) for a in applications],
        count=len(applications),
    )


@router.get("/{application_id}", response_model=JobApplicationResponse)
@limiter.limit("60/minute")
async def get_application(
    request: Request,
    application_id: str,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
):
    """Get an application. Visible to its apprentice and the job's client."""
    application = marketplace.get_application(actor, application_id)
    return JobApplicationResponse.from_application(application)


@router.post("/{application_id}/accept", response_model=AcceptApplicationResponse)
@limiter.limit("10/minute")
async def accept_application(
    request: Request,
    application_id: str,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
):
    """
    Accept an application.

    The job moves to 'in_progress' with the applicant assigned; the other
    pending applications are rejected. Fails with 409 if the job already
    has an accepted application.
    """
    logger.info(f"POST /applications/{application_id}/accept | client={actor.id}")
    application, job = marketplace.accept_application(actor, application_id)
    return AcceptApplicationResponse(
        application=JobApplicationResponse.from_application(application),
        job=JobRequestResponse.from_job(job),
    )


@router.post("/{application_id}/reject", response_model=JobApplicationResponse)
@limiter.limit("20/minute")
async def reject_application(
    request: Request,
    application_id: str,
    actor: CurrentActor,
    marketplace: MarketplaceDep,
):
    """Reject a pending application. The job is unaffected."""
    logger.info(f"POST /applications/{application_id}/reject | client={actor.id}")
    application = marketplace.reject_application(actor, application_id)
    return JobApplicationResponse.from_application(application)
