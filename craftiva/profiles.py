"""Profiles collaborator and the completion stats relay.

Profiles are owned by the identity subsystem. The marketplace reads them to
check that actors exist and credits ``completed_jobs``/``total_earnings``
when a job completes. Credits travel through an outbox written in the same
transaction as the completion, so a failed profile update is retried later
instead of being lost.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Set

from craftiva.errors import ProfileNotFoundError
from craftiva.jobs.models import ProfileStatsUpdate, utc_now

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"


@dataclass
class Profile:
    """The slice of a profile the marketplace cares about."""

    id: str
    total_earnings: int = 0
    completed_jobs: int = 0
    full_name: Optional[str] = None
    role: Optional[str] = None

    def __post_init__(self):
        if self.total_earnings < 0:
            raise ValueError("total_earnings cannot be negative")
        if self.completed_jobs < 0:
            raise ValueError("completed_jobs cannot be negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        return cls(
            id=data["id"],
            total_earnings=data.get("total_earnings") or 0,
            completed_jobs=data.get("completed_jobs") or 0,
            full_name=data.get("full_name"),
            role=data.get("role"),
        )


class ProfileStore(Protocol):
    """Protocol for the external profiles collection."""

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        ...

    def apply_completion_credit(self, update: ProfileStatsUpdate) -> Profile:
        """Add one completed job and ``update.earnings`` to the profile.

        Must be idempotent per ``update.id``.
        """
        ...


class InMemoryProfileStore:
    """In-memory profiles for testing and local development.

    With ``auto_create`` every id looked up gets an empty profile, standing
    in for the identity subsystem when the backend runs without a database.
    """

    def __init__(self, profiles: Optional[List[Profile]] = None, auto_create: bool = False):
        self._profiles: Dict[str, Profile] = {}
        self._auto_create = auto_create
        self._applied: Set[str] = set()
        self._lock = threading.Lock()
        for profile in profiles or []:
            self._profiles[profile.id] = profile

    def add_profile(self, profile_id: str, **fields) -> Profile:
        profile = Profile(id=profile_id, **fields)
        with self._lock:
            self._profiles[profile_id] = profile
        return profile

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        with self._lock:
            if self._auto_create and profile_id not in self._profiles:
                self._profiles[profile_id] = Profile(id=profile_id)
            profile = self._profiles.get(profile_id)
            return Profile(**vars(profile)) if profile else None

    def apply_completion_credit(self, update: ProfileStatsUpdate) -> Profile:
        with self._lock:
            profile = self._profiles.get(update.profile_id)
            if profile is None:
                raise ProfileNotFoundError(f"Profile {update.profile_id} not found")
            if update.id not in self._applied:
                profile.completed_jobs += 1
                profile.total_earnings += update.earnings
                self._applied.add(update.id)
            return Profile(**vars(profile))

    def delete_profile(self, profile_id: str, job_storage=None) -> bool:
        """Remove a profile, cascading into ``job_storage`` when given."""
        if job_storage is not None:
            job_storage.delete_profile_rows(profile_id)
        with self._lock:
            return self._profiles.pop(profile_id, None) is not None


class SupabaseProfileStore:
    """Profiles read from Supabase; credits go through a database function.

    ``apply_profile_stats_update`` increments the aggregates and marks the
    outbox row applied in one statement, which makes retries safe.
    """

    def __init__(self, client):
        self._client = client

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        result = (
            self._client.table(PROFILES_TABLE)
            .select("id, total_earnings, completed_jobs, full_name, role")
            .eq("id", profile_id)
            .limit(1)
            .execute()
        )
        return Profile.from_dict(result.data[0]) if result.data else None

    def apply_completion_credit(self, update: ProfileStatsUpdate) -> Profile:
        result = self._client.rpc(
            "apply_profile_stats_update", {"p_update_id": update.id}
        ).execute()
        rows = result.data if isinstance(result.data, list) else [result.data]
        if not rows or not rows[0]:
            raise ProfileNotFoundError(f"Profile {update.profile_id} not found")
        return Profile.from_dict(rows[0])


class ProfileStatsRelay:
    """Moves pending completion credits from the outbox onto profiles."""

    def __init__(self, storage, profiles: ProfileStore):
        self._storage = storage
        self._profiles = profiles

    def relay(self, update: ProfileStatsUpdate) -> bool:
        """Try to apply one credit. Returns True once it has been applied.

        A failure is recorded on the outbox row and left for the next flush.
        """
        if not update.is_pending:
            return True

        update.attempts += 1
        try:
            profile = self._profiles.apply_completion_credit(update)
        except Exception as e:
            update.last_error = str(e)[:500]
            self._storage.update_stats_update(update)
            logger.warning(
                "Profile credit failed | job=%s | profile=%s | attempt=%d | error=%s",
                update.job_request_id,
                update.profile_id,
                update.attempts,
                e,
            )
            return False

        update.applied_at = utc_now()
        update.last_error = None
        self._storage.update_stats_update(update)
        logger.info(
            "Profile credited | job=%s | profile=%s | earnings=%d | completed_jobs=%d",
            update.job_request_id,
            profile.id,
            update.earnings,
            profile.completed_jobs,
        )
        return True

    def flush(self, limit: int = 100) -> Dict[str, int]:
        """Retry every pending credit, oldest first."""
        applied = failed = 0
        for update in self._storage.list_pending_stats_updates(limit=limit):
            if self.relay(update):
                applied += 1
            else:
                failed += 1
        if applied or failed:
            logger.info("Profile stats flush | applied=%d | failed=%d", applied, failed)
        return {"applied": applied, "failed": failed}
