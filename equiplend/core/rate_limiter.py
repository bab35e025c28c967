# equiplend/core/rate_limiter.py
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request

from equiplend.core.config import RATE_LIMIT_ENABLED, RATE_LIMIT_STORAGE_URI

# In-memory by default; point RATE_LIMIT_STORAGE_URI at redis:// in production
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=RATE_LIMIT_STORAGE_URI,
    enabled=RATE_LIMIT_ENABLED,
)


def get_rate_limiter() -> Limiter:
    return limiter


def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)} on {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=429, content={"detail": f"Rate limit exceeded: {exc.detail}"})
