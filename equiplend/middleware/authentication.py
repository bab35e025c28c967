# equiplend/middleware/authentication.py
from typing import Awaitable, Callable, Optional, Set

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.security.utils import get_authorization_scheme_param
from jose import JWTError
from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from equiplend.core.security import actor_from_claims, decode_token

# Paths that do not require a bearer token
PUBLIC_PATHS: Set[str] = {
    "/",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/health",
}


def is_public_path(path: str) -> bool:
    if path in PUBLIC_PATHS: return True
    return path.startswith(("/docs", "/redoc", "/health"))


class AuthMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        path = request.url.path
        request_id = getattr(request.state, "request_id", "N/A")

        if request.method == "OPTIONS" or is_public_path(path):
            logger.debug(f"RID:{request_id} Public path accessed: {path}. Skipping auth.")
            return await call_next(request)

        authorization: Optional[str] = request.headers.get("Authorization")
        scheme, token = get_authorization_scheme_param(authorization or "")
        if not authorization or scheme.lower() != "bearer" or not token:
            logger.warning(f"RID:{request_id} Auth failed: No valid Bearer token for protected path {path}.")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Not authenticated"},
                headers={"WWW-Authenticate": "Bearer"},
            )

        try:
            request.state.actor = actor_from_claims(decode_token(token))
        except (JWTError, PydanticValidationError) as e:
            logger.warning(f"RID:{request_id} Auth failed: Invalid token for path {path}. Error: {e}")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid token"},
                headers={"WWW-Authenticate": "Bearer"},
            )

        logger.debug(f"RID:{request_id} Auth successful for '{request.state.actor.user_id}' accessing {path}.")
        return await call_next(request)
