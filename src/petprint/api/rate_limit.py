"""Rate limiting for the public referral endpoints."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from petprint.settings import settings


def client_key(request: Request) -> str:
    """Client address, taken from the first X-Forwarded-For hop when trusted."""
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return get_remote_address(request)


# Single shared limiter instance - disabled outside production
limiter = Limiter(
    key_func=client_key,
    default_limits=[settings.rate_limit_default],
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.env == "production",
)
