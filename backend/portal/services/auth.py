"""Authentication service with refresh token rotation."""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.config import settings
from portal.models.user import User
from portal.schemas.user import TokenData

logger = structlog.get_logger()


class AuthService:
    """Service for authentication operations with secure token management."""

    pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

    @classmethod
    def verify_password(cls, plain_password: str, hashed_password: Optional[str]) -> bool:
        """Verify a password against a hash."""
        if not hashed_password:
            return False
        return cls.pwd_context.verify(plain_password, hashed_password)

    @classmethod
    def hash_password(cls, password: str) -> str:
        """Hash a password."""
        return cls.pwd_context.hash(password)

    @classmethod
    def create_access_token(
        cls,
        user_id: int,
        username: str,
        is_superuser: bool = False,
        token_version: int = 0,
    ) -> str:
        """
        Create a JWT access token.

        The token includes a version number that must match the user's
        current token_version for the token to be valid.
        """
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
        to_encode = {
            "sub": str(user_id),
            "username": username,
            "is_superuser": is_superuser,
            "exp": expire,
            "type": "access",
            "ver": token_version,
        }
        return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    @classmethod
    def create_refresh_token(
        cls,
        user_id: int,
        token_version: int = 0,
        family_id: Optional[str] = None,
    ) -> Tuple[str, str]:
        """
        Create a JWT refresh token with rotation support.

        Each refresh token belongs to a family (a chain of rotated tokens).
        Using a token issues the next one in the same family; presenting a
        token from a superseded family invalidates every session.

        Returns:
            Tuple of (refresh_token, family_id)
        """
        if not family_id:
            family_id = secrets.token_urlsafe(32)

        expire = datetime.now(timezone.utc) + timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS)
        to_encode = {
            "sub": str(user_id),
            "exp": expire,
            "type": "refresh",
            "ver": token_version,
            "fam": family_id,
            "jti": secrets.token_urlsafe(16),
        }
        token = jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
        return token, family_id

    @classmethod
    def decode_token(cls, token: str, expected_type: Optional[str] = None) -> Optional[TokenData]:
        """Decode and validate a JWT token."""
        try:
            payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        except JWTError:
            return None
        if expected_type and payload.get("type") != expected_type:
            return None
        user_id = payload.get("sub")
        if user_id is None or not str(user_id).isdigit():
            return None
        return TokenData(
            user_id=int(user_id),
            username=payload.get("username"),
            is_superuser=payload.get("is_superuser", False),
            token_version=payload.get("ver", 0),
            token_family=payload.get("fam"),
            token_type=payload.get("type"),
        )

    @classmethod
    async def get_user_by_username(cls, db: AsyncSession, username: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    @classmethod
    async def get_user_by_email(cls, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
        return result.scalars().first()

    @classmethod
    async def get_user_by_id(cls, db: AsyncSession, user_id: int) -> Optional[User]:
        return await db.get(User, user_id)

    @classmethod
    async def get_user_by_cat_id(cls, db: AsyncSession, cat_id: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.cat_id == cat_id))
        return result.scalar_one_or_none()

    @classmethod
    async def authenticate_user(cls, db: AsyncSession, username: str, password: str) -> Optional[User]:
        """Authenticate with username (or email) and password."""
        result = await db.execute(
            select(User).where(or_(User.username == username, func.lower(User.email) == username.lower()))
        )
        user = result.scalars().first()
        if not user:
            return None
        if not cls.verify_password(password, user.hashed_password):
            return None
        return user

    @classmethod
    async def create_user(
        cls,
        db: AsyncSession,
        username: str,
        password: Optional[str],
        email: Optional[str] = None,
        firstname: Optional[str] = None,
        lastname: Optional[str] = None,
        auth_method: str = "database",
    ) -> User:
        """Create a new user; a None password leaves the account without one."""
        user = User(
            username=username,
            email=email,
            hashed_password=cls.hash_password(password) if password else None,
            firstname=firstname,
            lastname=lastname,
            auth_method=auth_method,
            token_version=0,
        )
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    @classmethod
    async def update_last_login(cls, db: AsyncSession, user: User) -> User:
        """Update user's last login timestamp."""
        user.last_login_at = datetime.now(timezone.utc)
        await db.flush()
        return user

    @classmethod
    def generate_verify_hash(cls, user: User) -> str:
        """New hash for password (re)set links."""
        user.verify_hash = secrets.token_hex(32)
        return user.verify_hash

    @classmethod
    async def get_user_by_verify_hash(cls, db: AsyncSession, verify_hash: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.verify_hash == verify_hash))
        return result.scalar_one_or_none()

    @classmethod
    async def validate_refresh_token(
        cls,
        db: AsyncSession,
        token_data: TokenData,
    ) -> Tuple[bool, Optional[User], Optional[str]]:
        """
        Validate a refresh token and check for token reuse.

        Returns:
            Tuple of (is_valid, user, error_message)
        """
        if not token_data or not token_data.user_id:
            return False, None, "Invalid token"

        user = await cls.get_user_by_id(db, token_data.user_id)
        if not user:
            return False, None, "User not found"

        if not user.is_active:
            return False, None, "User account is inactive"

        user_token_version = user.token_version or 0
        token_version = token_data.token_version or 0

        if token_version != user_token_version:
            logger.warning(
                "Token version mismatch - possible token reuse after logout/password change",
                user_id=user.id,
                token_version=token_version,
                user_token_version=user_token_version,
            )
            return False, None, "Token has been invalidated"

        if token_data.token_family:
            if user.refresh_token_family and user.refresh_token_family != token_data.token_family:
                logger.error(
                    "Refresh token reuse detected - invalidating all tokens",
                    user_id=user.id,
                )
                user.invalidate_all_tokens()
                await db.flush()
                return False, None, "Token reuse detected - all sessions invalidated"

        return True, user, None

    @classmethod
    async def rotate_refresh_token(
        cls,
        db: AsyncSession,
        user: User,
        old_family: Optional[str] = None,
    ) -> Tuple[str, str, str]:
        """
        Issue new access and refresh tokens with rotation.

        Returns:
            Tuple of (access_token, refresh_token, family_id)
        """
        token_version = user.token_version or 0
        access_token = cls.create_access_token(user.id, user.username, user.is_superuser, token_version)
        refresh_token, family_id = cls.create_refresh_token(user.id, token_version, old_family)

        user.refresh_token_family = family_id
        await db.flush()

        logger.info("Token rotation completed", user_id=user.id, family_id=family_id[:8] + "...")
        return access_token, refresh_token, family_id

    @classmethod
    async def logout_user(cls, db: AsyncSession, user: User) -> None:
        """Logout user by invalidating all tokens."""
        user.invalidate_all_tokens()
        await db.flush()
        logger.info("User logged out - all tokens invalidated", user_id=user.id)
