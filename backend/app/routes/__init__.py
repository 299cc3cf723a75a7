"""API routes."""

from .applications import router as applications_router
from .jobs import router as jobs_router

__all__ = [
    "jobs_router",
    "applications_router",
]
