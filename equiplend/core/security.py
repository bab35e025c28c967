# equiplend/core/security.py
"""
Token verification. Tokens are issued by the campus identity service (or
create_token.py in development); this service only checks them.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from equiplend.core.config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from equiplend.models.identity import Actor, UserRole

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Raises JWTError when the signature, expiry or `sub` claim is bad."""
    payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    if not payload.get("sub"): raise JWTError("Subject ('sub') missing in token payload.")
    return payload


def actor_from_claims(claims: Dict[str, Any]) -> Actor:
    return Actor(
        user_id=str(claims["sub"]),
        email=claims.get("email"),
        name=claims.get("name"),
        role=claims.get("role", UserRole.USER.value),
    )


# --- Dependencies ---
async def get_current_actor(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> Actor:
    """
    Returns the actor set by AuthMiddleware, or decodes the token itself
    when the middleware did not run (e.g. routers mounted elsewhere).
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    actor: Optional[Actor] = getattr(request.state, "actor", None)
    if actor is not None: return actor

    if not token: raise credentials_exception
    logger.warning("Actor not found in request state, decoding token in dependency.")
    try:
        return actor_from_claims(decode_token(token))
    except (JWTError, PydanticValidationError) as e:
        logger.warning(f"Token rejected in get_current_actor dependency: {e}")
        raise credentials_exception from e


def require_roles(required_roles: List[UserRole]):
    """Factory for a dependency that checks the actor has one of the required roles."""
    async def roles_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in required_roles:
            logger.warning(
                f"Forbidden: '{actor.user_id}' with role '{actor.role.value}' "
                f"attempted action requiring one of roles: {[r.value for r in required_roles]}."
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Operation not permitted. Required roles: {[r.value for r in required_roles]}",
            )
        return actor
    return roles_checker


require_staff_or_admin = require_roles([UserRole.ADMIN, UserRole.STAFF])
