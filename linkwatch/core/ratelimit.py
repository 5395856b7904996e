import os

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

# per client IP; manual scan triggers start real crawls
SCAN_TRIGGER_LIMIT = os.getenv("SCAN_TRIGGER_RATE_LIMIT", "10/minute")

limiter = Limiter(key_func=get_remote_address)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": f"Too many scan requests ({exc.detail}). Try again shortly."},
        headers={"Retry-After": "60"},
    )
