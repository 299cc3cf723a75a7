"""
Craftiva - job marketplace for clients and apprentices.

Clients post job requests, apprentices apply, one application is accepted
and the job runs to completion under row-level access rules.
"""

from .config import CompletionPolicy, MarketplaceConfig
from .marketplace import Marketplace
from .policy import Actor, Decision, Operation, authorize

try:
    from importlib.metadata import version

    __version__ = version("craftiva")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "Actor",
    "CompletionPolicy",
    "Decision",
    "Marketplace",
    "MarketplaceConfig",
    "Operation",
    "authorize",
]
