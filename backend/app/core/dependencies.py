"""
Authentication dependencies for FastAPI.

Every ledger operation is scoped to the user id carried by a verified
bearer token, never to an id supplied in the request body.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.core.jwt import decode_access_token
from backend.app.db.session import get_db
from backend.app.models.user import User

# HTTP Bearer security scheme
security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    Resolve the bearer token to the tenant making the request.

    1. Token signature and expiry are valid
    2. The user still exists and is active (checked on every request, so a
       deactivated tenant loses access without waiting for token expiry)

    Returns:
        {"user_id": int, "sub": username}

    Raises:
        HTTPException: 401 for a bad token or unknown user, 403 if inactive
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Could not validate credentials")

    user_id = payload.get("user_id")
    if not isinstance(user_id, int):
        raise _unauthorized("Invalid token payload")

    user = await db.get(User, user_id)
    if user is None:
        raise _unauthorized("User not found")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    return {"user_id": user.id, "sub": user.username}
