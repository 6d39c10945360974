"""Per-client request limits.

``POST /api/analyze`` is limited because every chunk of a batch is a
billed Gemini call. With the offline classifier active nothing is billed,
so the analyze limit is lifted in mock mode.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from docfiling.config import get_settings

DEFAULT_RETRY_AFTER = 60  # seconds

RATE_LIMITS = {
    "analyze": "10/minute",   # one or more oracle calls per request
    "skills": "60/minute",
}


def rate_limit_key(request: Request) -> str:
    """
    Address the limits are counted against.

    The direct peer address, unless the peer is a configured trusted proxy,
    in which case the first ``X-Forwarded-For`` hop is the client.
    """
    peer = get_remote_address(request)
    if peer not in get_settings().trusted_proxy_list:
        return peer

    first_hop = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    return first_hop or peer


def classifier_is_offline() -> bool:
    """True when batches go to the mock classifier rather than Gemini."""
    settings = get_settings()
    return settings.use_mock or not settings.oracle_configured


limiter = Limiter(key_func=rate_limit_key)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """
    429 response naming the exceeded limit and the classifier mode.

    ``Retry-After`` is the length of the limit's window, the longest a
    client can have to wait.
    """
    limit_item = getattr(getattr(exc, "limit", None), "limit", None)
    retry_after = limit_item.get_expiry() if limit_item is not None else DEFAULT_RETRY_AFTER

    return JSONResponse(
        status_code=429,
        content={
            "detail": f"Rate limit exceeded: {exc.detail}",
            "classifier_mode": "mock" if classifier_is_offline() else "live",
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )
