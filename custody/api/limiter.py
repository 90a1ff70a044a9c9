"""
Custody - Rate Limiting
=======================
Shared slowapi limiter. The server installs it on ``app.state`` and the
auth routes decorate their endpoints with the stricter auth limit.
"""

from typing import Optional

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from custody.config import settings
from custody.services.audit import UNKNOWN, get_client_ip


def get_rate_limit_key(request: Request, trust_forwarded_for: Optional[bool] = None) -> str:
    """
    Rate limit by socket peer address.

    Forwarded headers are client-controlled, so they only count when the
    service sits behind a proxy that rewrites them (``TRUST_FORWARDED_FOR``).
    """
    if trust_forwarded_for is None:
        trust_forwarded_for = settings.trust_forwarded_for

    if trust_forwarded_for:
        ip = get_client_ip(request)
        if ip != UNKNOWN:
            return ip
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=[settings.rate_limit_global],
)
