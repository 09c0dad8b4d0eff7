"""Rate limiting for the sync endpoint.

Keys requests by client IP. ``X-Forwarded-For`` is only honored when the
direct peer is a trusted proxy (``TRUSTED_PROXY_CIDRS``), so clients cannot
spoof their way into another bucket.
"""

import ipaddress
import logging

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import Settings, get_settings

logger = logging.getLogger("ledgersync.api.rate_limit")

_trusted_networks: list | None = None


def load_trusted_networks(settings: Settings) -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    """Parse trusted proxy CIDRs; invalid entries are logged and skipped."""
    networks = []
    for cidr in settings.trusted_proxy_cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr.strip(), strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {cidr!r}")
    return networks


def configure_rate_limiting(settings: Settings) -> None:
    """Apply settings to the module-level limiter (called from ``create_app``)."""
    global _trusted_networks
    _trusted_networks = load_trusted_networks(settings)
    limiter.enabled = settings.rate_limit_enabled


def _trusted(ip_str: str) -> bool:
    global _trusted_networks
    if _trusted_networks is None:
        _trusted_networks = load_trusted_networks(get_settings())
    try:
        addr = ipaddress.ip_address(ip_str.strip())
    except ValueError:
        return False
    return any(addr in network for network in _trusted_networks)


def get_client_ip(request) -> str:
    """Resolve the client IP used as the rate limit key.

    Behind a trusted proxy, ``X-Forwarded-For`` is walked from the right and
    the first hop that is not itself a trusted proxy is the client. Any other
    peer is keyed by its own address.
    """
    peer = get_remote_address(request)
    forwarded_for = request.headers.get("x-forwarded-for")
    if not forwarded_for or not _trusted(peer):
        return peer

    hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
    for hop in reversed(hops):
        if not _trusted(hop):
            return hop
    return hops[0] if hops else peer


def sync_rate_limit() -> str:
    """Limit string for the sync endpoint, e.g. ``60/minute``."""
    return get_settings().sync_rate_limit


limiter = Limiter(key_func=get_client_ip)
