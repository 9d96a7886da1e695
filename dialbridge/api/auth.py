"""Authentication endpoints and utilities."""
import logging
from datetime import datetime, timedelta
from typing import Optional

import jwt
from fastapi import APIRouter, Request

from dialbridge.core.config import settings
from dialbridge.core.errors import AuthenticationError

router = APIRouter()
logger = logging.getLogger(__name__)


def create_access_token(user_id: str, expires_in: timedelta = timedelta(hours=24)) -> str:
    """Issue a signed bearer token for a user."""
    payload = {
        "uid": user_id,
        "sub": user_id,
        "iat": datetime.utcnow(),
        "exp": datetime.utcnow() + expires_in,
    }
    if settings.auth_jwt_audience:
        payload["aud"] = settings.auth_jwt_audience
    return jwt.encode(payload, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)


def get_bearer_token(request: Request) -> Optional[str]:
    """Extract the bearer token from the Authorization header."""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def verify_token(token: Optional[str]) -> str:
    """
    Verify a bearer token and return the user id it was issued for.

    Raises:
        AuthenticationError: token missing, expired or otherwise invalid
    """
    if not token:
        raise AuthenticationError("No token provided")

    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
            options={"verify_aud": settings.auth_jwt_audience is not None},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"[AUTH] Token verification error: {type(e).__name__}: {str(e)}")
        raise AuthenticationError("Invalid token")

    user_id = claims.get("uid") or claims.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token")
    return str(user_id)


async def require_user(request: Request) -> str:
    """Dependency resolving the verified user id of the caller."""
    return verify_token(get_bearer_token(request))


@router.get("/auth/health")
async def auth_health():
    """Health check for auth."""
    return {
        "status": "Auth service is running",
        "timestamp": datetime.utcnow().isoformat(),
    }
