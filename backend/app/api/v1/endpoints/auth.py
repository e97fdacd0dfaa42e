"""
Authentication API endpoints.

Register, login and "who am I". A registered user is a ledger tenant: the
user_id in the issued token scopes every party, entry and report.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from backend.app.db.session import get_db
from backend.app.models.user import User
from backend.app.schemas.auth import UserRegister, UserLogin, TokenResponse, UserResponse
from backend.app.core.security import get_password_hash, verify_password
from backend.app.core.jwt import create_access_token
from backend.app.core.dependencies import get_current_user
from backend.app.services.audit import log_auth_event, AuditAction

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def _find_user(db: AsyncSession, username: str, email: Optional[str] = None) -> Optional[User]:
    """Look a user up by username, or by email (login accepts either in one field)."""
    result = await db.execute(
        select(User).where(or_(User.username == username, User.email == (email or username)))
    )
    return result.scalars().first()


def _issue_token(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(data={"sub": user.username, "user_id": user.id}),
        user_id=user.id,
        username=user.username,
        email=user.email,
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Register a new tenant and log it in.

    400 if the username or the email is already taken.
    """
    existing_user = await _find_user(db, user_data.username, user_data.email)
    if existing_user:
        taken = "Username" if existing_user.username == user_data.username else "Email"
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{taken} already registered"
        )

    new_user = User(
        email=user_data.email,
        username=user_data.username,
        hashed_password=get_password_hash(user_data.password),
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)

    await log_auth_event(
        db=db,
        action=AuditAction.USER_CREATED,
        user_id=new_user.id,
        username=new_user.username,
        ip_address=_client_ip(request)
    )

    return _issue_token(new_user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Exchange username (or email) and password for a bearer token.

    Every attempt is written to the audit log; failures record the reason.
    """
    user = await _find_user(db, credentials.username)

    reason = None
    if user is None:
        reason = "User not found"
    elif not verify_password(credentials.password, user.hashed_password):
        reason = "Invalid password"
    elif not user.is_active:
        reason = "Account is inactive"

    await log_auth_event(
        db=db,
        action=AuditAction.LOGIN_FAILED if reason else AuditAction.LOGIN_SUCCESS,
        user_id=user.id if user else None,
        username=user.username if user else credentials.username,
        ip_address=_client_ip(request),
        metadata={"reason": reason} if reason else None
    )

    if reason == "Account is inactive":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account"
        )
    if reason:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return _issue_token(user)


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Profile of the authenticated tenant."""
    user = await db.get(User, current_user["user_id"])
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return UserResponse.model_validate(user)
