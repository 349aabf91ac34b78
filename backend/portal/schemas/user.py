"""User-related Pydantic schemas."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


# Password complexity requirements
PASSWORD_SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:',.<>?/`~"


def validate_password_complexity(password: str) -> str:
    """
    Validate password meets complexity requirements.

    Requirements:
    - At least 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    if not any(c.isupper() for c in password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in password):
        raise ValueError("Password must contain at least one digit")
    if not any(c in PASSWORD_SPECIAL_CHARS for c in password):
        raise ValueError(f"Password must contain at least one special character ({PASSWORD_SPECIAL_CHARS})")
    return password


class UserCreate(BaseModel):
    """Schema for creating a new user."""
    username: str = Field(..., min_length=1, max_length=255, pattern=r"^[^\s]+$")
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    firstname: Optional[str] = Field(None, max_length=255)
    lastname: Optional[str] = Field(None, max_length=255)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate password complexity."""
        return validate_password_complexity(v)


class UserUpdate(BaseModel):
    """Schema for updating a user."""
    firstname: Optional[str] = Field(None, max_length=255)
    lastname: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    home_library: Optional[str] = Field(None, max_length=100)


class UserResponse(BaseModel):
    """Schema for user response - excludes sensitive data."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: Optional[str] = None
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    home_library: Optional[str] = None
    cat_username: Optional[str] = None
    has_catalog_credentials: bool = False
    is_active: bool
    is_superuser: bool = False
    created_at: datetime
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user) -> "UserResponse":
        """Create response from User model with computed fields."""
        return cls.model_validate(user)


class UserLogin(BaseModel):
    """Schema for user login (username or email)."""
    username: str
    password: str


class CatalogLogin(BaseModel):
    """Library account credentials."""
    cat_username: str = Field(..., min_length=1, max_length=255)
    cat_password: str = Field("", max_length=255)


class Token(BaseModel):
    """Schema for JWT tokens (access token only - refresh token in httpOnly cookie)."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class TokenData(BaseModel):
    """Schema for decoded token data."""
    user_id: Optional[int] = None
    username: Optional[str] = None
    is_superuser: bool = False
    token_version: Optional[int] = None
    token_family: Optional[str] = None
    token_type: Optional[str] = None


class PasswordChange(BaseModel):
    """Schema for changing password."""
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate password complexity."""
        return validate_password_complexity(v)


class PasswordReset(BaseModel):
    """Set a password through a verify-hash link."""
    hash: str = Field(..., min_length=16, max_length=64)
    new_password: str = Field(..., min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_complexity(v)
