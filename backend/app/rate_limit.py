"""Rate limiting for the Craftiva backend.

Requests are keyed by client IP. ``X-Forwarded-For`` is honored only when
the direct peer is a trusted proxy, so clients cannot pick their own key.
Set ``RATE_LIMIT_ENABLED=false`` to switch limiting off (local runs, tests).
"""

import ipaddress
import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from craftiva.logging_config import get_logger

logger = get_logger("backend.rate_limit")

# Override with TRUSTED_PROXY_CIDRS (comma-separated)
DEFAULT_TRUSTED_CIDRS = (
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "127.0.0.0/8",
    "::1/128",
)

_trusted_networks: list | None = None


def load_trusted_networks(raw: str | None = None) -> list:
    """Parse trusted proxy CIDRs, skipping invalid entries."""
    if raw is None:
        raw = os.environ.get("TRUSTED_PROXY_CIDRS", "")
    cidrs = [s.strip() for s in raw.split(",") if s.strip()] or list(DEFAULT_TRUSTED_CIDRS)
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {cidr!r}")
    return networks


def is_trusted_proxy(ip_str: str) -> bool:
    global _trusted_networks
    if _trusted_networks is None:
        _trusted_networks = load_trusted_networks()
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in network for network in _trusted_networks)


def get_client_ip(request) -> str:
    """Resolve the client IP used as the rate limit key."""
    direct_ip = get_remote_address(request)
    if is_trusted_proxy(direct_ip):
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
            if client_ip:
                return client_ip
    return direct_ip


def _enabled() -> bool:
    return os.environ.get("RATE_LIMIT_ENABLED", "true").strip().lower() not in ("0", "false", "no")


limiter = Limiter(key_func=get_client_ip, enabled=_enabled())
