"""Per-client rate limits for the search, filter and suggestion endpoints."""

from __future__ import annotations

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

logger = structlog.get_logger(__name__)

# Search and filter draw from one shared budget per client.
SEARCH_SCOPE = "search"


def build_limiter(enabled: bool = True) -> Limiter:
    """Create an in-memory limiter keyed on the client address.

    One limiter per application, so separate apps never share counters.
    """
    return Limiter(key_func=get_remote_address, enabled=enabled)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a message naming the throttled endpoint family."""
    kind = "suggestion" if request.url.path.startswith("/suggestions") else "search"
    logger.warning(
        "rate_limit.exceeded",
        path=request.url.path,
        client=get_remote_address(request),
        limit=str(exc.detail),
    )
    return JSONResponse(
        status_code=429,
        content={"detail": f"Too many {kind} requests, please try again later."},
    )
