"""Authentication API routes with refresh token rotation."""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.api.deps import client_ip, get_current_active_user
from portal.config import settings
from portal.database import get_db
from portal.middleware.rate_limit import auth_limiter
from portal.models.audit import AuditAction, AuditLog
from portal.models.user import User
from portal.schemas.user import (
    PasswordChange, PasswordReset, Token, UserCreate, UserLogin, UserResponse, UserUpdate,
)
from portal.services.auth import AuthService
from portal.services.rate_limit import login_rate_limiter

logger = structlog.get_logger()
router = APIRouter()

REFRESH_TOKEN_COOKIE_NAME = "refresh_token"
REFRESH_TOKEN_COOKIE_PATH = "/api/v1/auth"


def set_refresh_token_cookie(response: Response, refresh_token: str) -> None:
    """Set refresh token in a secure httpOnly cookie."""
    response.set_cookie(
        key=REFRESH_TOKEN_COOKIE_NAME,
        value=refresh_token,
        max_age=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=settings.ENVIRONMENT == "production",
        samesite="strict",
        path=REFRESH_TOKEN_COOKIE_PATH,
    )


def clear_refresh_token_cookie(response: Response) -> None:
    response.delete_cookie(key=REFRESH_TOKEN_COOKIE_NAME, path=REFRESH_TOKEN_COOKIE_PATH)


def _token(access_token: str) -> Token:
    return Token(access_token=access_token, expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60)


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
@auth_limiter
async def register(
    user_data: UserCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Register a new user."""
    if (
        await AuthService.get_user_by_username(db, user_data.username)
        or await AuthService.get_user_by_email(db, user_data.email)
    ):
        # Generic message to prevent enumeration
        logger.warning("Registration attempt with existing username or email", ip=client_ip(request))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Registration failed. Please check your information or contact support.",
        )

    user = await AuthService.create_user(
        db,
        username=user_data.username,
        password=user_data.password,
        email=user_data.email,
        firstname=user_data.firstname,
        lastname=user_data.lastname,
    )
    db.add(AuditLog.for_request(request, AuditAction.REGISTER, user.id, description="User registered"))
    return UserResponse.from_user(user)


@router.post("/login", response_model=Token)
@auth_limiter
async def login(
    login_data: UserLogin,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate user and return an access token; the refresh token goes in a cookie."""
    ip = client_ip(request)

    is_locked, seconds_remaining = await login_rate_limiter.is_locked(login_data.username)
    if is_locked:
        logger.warning("Login attempt on locked account", username=login_data.username, ip=ip)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Account temporarily locked. Try again in {seconds_remaining} seconds.",
            headers={"Retry-After": str(seconds_remaining)},
        )

    user = await AuthService.authenticate_user(db, login_data.username, login_data.password)
    if not user:
        is_now_locked, attempts_remaining = await login_rate_limiter.record_failed_attempt(login_data.username, ip)
        db.add(AuditLog.for_request(
            request,
            AuditAction.LOGIN,
            description="Failed login attempt",
            details={"username": login_data.username, "locked": is_now_locked},
            success="failure",
        ))
        await db.commit()
        if is_now_locked:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Too many failed attempts. Account locked for {settings.LOGIN_LOCKOUT_MINUTES} minutes.",
                headers={"Retry-After": str(settings.LOGIN_LOCKOUT_MINUTES * 60)},
            )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    await login_rate_limiter.record_successful_login(login_data.username, ip)
    await AuthService.update_last_login(db, user)
    access_token, refresh_token, _ = await AuthService.rotate_refresh_token(db, user)
    db.add(AuditLog.for_request(request, AuditAction.LOGIN, user.id, description="User logged in"))

    set_refresh_token_cookie(response, refresh_token)
    return _token(access_token)


@router.post("/refresh", response_model=Token)
async def refresh_token(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a new access token from the refresh token cookie.

    Each refresh rotates the refresh token; presenting a superseded one
    invalidates every session of the user.
    """
    token = request.cookies.get(REFRESH_TOKEN_COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token required")

    token_data = AuthService.decode_token(token, expected_type="refresh")
    if not token_data:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    is_valid, user, error = await AuthService.validate_refresh_token(db, token_data)
    if not is_valid:
        logger.warning("Refresh token validation failed", error=error, ip=client_ip(request))
        # Persist a reuse-triggered invalidation before failing
        await db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=error or "Invalid refresh token")

    access_token, new_refresh_token, _ = await AuthService.rotate_refresh_token(db, user, token_data.token_family)
    set_refresh_token_cookie(response, new_refresh_token)
    return _token(access_token)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """Logout user and invalidate all tokens."""
    await AuthService.logout_user(db, current_user)
    clear_refresh_token_cookie(response)
    db.add(AuditLog.for_request(request, AuditAction.LOGOUT, current_user.id, description="User logged out"))
    return {"message": "Logged out successfully. All sessions have been invalidated."}


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    current_user: User = Depends(get_current_active_user),
):
    return UserResponse.from_user(current_user)


@router.patch("/me", response_model=UserResponse)
async def update_current_user_profile(
    user_data: UserUpdate,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """Update current user profile."""
    changes = user_data.model_dump(exclude_unset=True)
    if "email" in changes and changes["email"] != current_user.email:
        current_user.email_verified = None
    for key, value in changes.items():
        setattr(current_user, key, value)
    await db.flush()
    await db.refresh(current_user)
    return UserResponse.from_user(current_user)


@router.post("/change-password")
async def change_password(
    password_data: PasswordChange,
    request: Request,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Change current user password.

    This also invalidates all existing tokens, requiring re-login.
    """
    if not AuthService.verify_password(password_data.current_password, current_user.hashed_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")

    current_user.hashed_password = AuthService.hash_password(password_data.new_password)
    current_user.invalidate_all_tokens()
    await db.flush()
    db.add(AuditLog.for_request(request, AuditAction.PASSWORD_CHANGE, current_user.id))
    return {"message": "Password changed successfully. Please log in again."}


@router.post("/reset-password")
async def reset_password(
    data: PasswordReset,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Set a password from a verify-hash link (welcome or recovery email)."""
    user = await AuthService.get_user_by_verify_hash(db, data.hash)
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="recovery_invalid_hash")

    user.hashed_password = AuthService.hash_password(data.new_password)
    user.verify_hash = None
    if user.email and not user.email_verified:
        user.email_verified = datetime.now(timezone.utc)
    user.invalidate_all_tokens()
    await db.flush()
    db.add(AuditLog.for_request(
        request, AuditAction.PASSWORD_CHANGE, user.id, description="Password set from verification link"
    ))
    return {"message": "new_password_success"}
