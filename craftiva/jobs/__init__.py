"""Job marketplace subsystem.

Models:
- JobRequest: A job posted by a client
- JobApplication: An apprentice's application to a job request
- JobStatus: Job request lifecycle status
- ApplicationStatus: Application lifecycle status
- JobStateTransition: Audit log entry for state changes
- ProfileStatsUpdate: Pending earnings credit for a completed job

Service:
- JobService: Lifecycle operations (create, apply, accept, progress, complete, cancel)

Storage:
- InMemoryJobStorage: Local/testing backend
- SupabaseJobStorage: Production backend
"""

from craftiva.jobs.models import (
    VALID_JOB_TRANSITIONS,
    ApplicationStatus,
    JobApplication,
    JobRequest,
    JobStateTransition,
    JobStatus,
    ProfileStatsUpdate,
)
from craftiva.jobs.service import JobSearchFilters, JobService
from craftiva.jobs.storage import InMemoryJobStorage, JobStorage
from craftiva.jobs.supabase_storage import SupabaseJobStorage

__all__ = [
    # Models
    "JobRequest",
    "JobApplication",
    "JobStatus",
    "ApplicationStatus",
    "JobStateTransition",
    "ProfileStatsUpdate",
    "VALID_JOB_TRANSITIONS",
    # Service
    "JobService",
    "JobSearchFilters",
    # Storage
    "JobStorage",
    "InMemoryJobStorage",
    "SupabaseJobStorage",
]
