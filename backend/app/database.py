"""Storage wiring for the marketplace.

Builds one :class:`craftiva.Marketplace` per process, backed by Supabase or
by in-memory stores depending on ``STORAGE_BACKEND``.
"""

from typing import Annotated

from fastapi import Depends

from craftiva import Marketplace, MarketplaceConfig
from craftiva.jobs import InMemoryJobStorage, SupabaseJobStorage
from craftiva.logging_config import get_logger
from craftiva.profiles import InMemoryProfileStore, SupabaseProfileStore
from supabase import Client, create_client

from .config import Settings, get_settings

logger = get_logger("backend.database")

_supabase_client: Client | None = None
_marketplace: Marketplace | None = None


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        if not settings.supabase_url:
            raise ValueError("SUPABASE_URL must be set")
        # Prefer new secret key, fall back to legacy service_role_key
        api_key = settings.supabase_secret_key or settings.supabase_service_role_key
        if not api_key:
            raise ValueError("Either SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


def build_marketplace(settings: Settings) -> Marketplace:
    """Create a marketplace for the configured storage backend."""
    config = MarketplaceConfig.from_env()
    if settings.storage_backend == "memory":
        logger.info("Using in-memory marketplace storage")
        return Marketplace(
            InMemoryJobStorage(),
            config=config,
            profiles=InMemoryProfileStore(auto_create=True),
        )

    client = get_supabase_client(settings)
    return Marketplace(
        SupabaseJobStorage(client),
        config=config,
        profiles=SupabaseProfileStore(client),
    )


def get_marketplace(settings: Annotated[Settings, Depends(get_settings)]) -> Marketplace:
    """FastAPI dependency for the process-wide marketplace."""
    global _marketplace
    if _marketplace is None:
        _marketplace = build_marketplace(settings)
    return _marketplace


def reset_marketplace() -> None:
    """Drop the cached marketplace and client (tests, settings reload)."""
    global _marketplace, _supabase_client
    _marketplace = None
    _supabase_client = None


# Type alias for dependency injection
MarketplaceDep = Annotated[Marketplace, Depends(get_marketplace)]
