from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError

from libs.auth.models import AuthUser
from libs.common.config import get_settings

settings = get_settings()
security = HTTPBearer(auto_error=False)


def _credentials_exception(detail: str = "Could not validate credentials"):
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str) -> AuthUser:
    """Decode a Supabase access token (HS256) into an AuthUser."""
    try:
        payload = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            # Supabase tokens vary in aud (authenticated / service_role)
            options={"verify_aud": False},
        )
        return AuthUser(**payload)
    except (JWTError, ValidationError):
        raise _credentials_exception()


async def get_current_user(
    request: Request,
    token: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> AuthUser:
    """
    Validate the bearer token and return the authenticated user.
    The user is also stored on request.state for per-user rate limiting.
    """
    if token is None or not token.credentials:
        raise _credentials_exception("Unauthorized")

    user = decode_access_token(token.credentials)
    request.state.user = user
    return user
