"""Rate limiting middleware setup."""

from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from flowtrack.models.errors import ErrorResponse

# Per-client limits; writes are cheaper to abuse than reads
READ_LIMIT = "60/minute"
WRITE_LIMIT = "30/minute"
BATCH_LIMIT = "10/minute"

limiter = Limiter(key_func=get_remote_address)


async def custom_rate_limit_handler(request, exc):
    """Return consistent JSON error format for rate limit exceeded."""
    return JSONResponse(
        status_code=429,
        content=ErrorResponse(
            detail=f"Rate limit exceeded ({exc.detail}). Please try again later.",
            error_code="rate_limited",
        ).model_dump(),
    )


def setup_rate_limiting(app):
    """Attach the shared limiter and its 429 handler to ``app``."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, custom_rate_limit_handler)
    return limiter
