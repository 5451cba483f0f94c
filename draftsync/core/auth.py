from typing import Optional
import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from draftsync.core.security import verify_token

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_owner(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> uuid.UUID:
    """Владелец черновиков берется только из токена, не из запроса"""
    if credentials is None:
        raise _unauthorized("Missing bearer token")

    payload = verify_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise _unauthorized("Could not validate credentials")

    try:
        return uuid.UUID(payload["sub"])
    except ValueError:
        raise _unauthorized("Invalid token subject")
