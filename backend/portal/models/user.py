"""User model for authentication and library account linkage."""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from portal.database import Base


class User(Base):
    """Portal user, optionally linked to a library (ILS) account."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=True)
    firstname = Column(String(255), nullable=True)
    lastname = Column(String(255), nullable=True)
    email = Column(String(255), index=True, nullable=True)
    email_verified = Column(DateTime(timezone=True), nullable=True)

    # Library account (ILS) credentials; the password is stored encrypted
    cat_id = Column(String(255), unique=True, index=True, nullable=True)
    cat_username = Column(String(255), nullable=True)
    cat_password_enc = Column(String(512), nullable=True)
    home_library = Column(String(100), nullable=True)

    # Hash used for email verification and password (re)set links
    verify_hash = Column(String(64), nullable=True, index=True)
    auth_method = Column(String(50), nullable=True, default="database")
    last_language = Column(String(30), nullable=True)

    # Status
    is_active = Column(Boolean, default=True, nullable=False)
    is_superuser = Column(Boolean, default=False, nullable=False)

    # Token security - version increments on password change/logout to invalidate tokens
    token_version = Column(Integer, default=0, nullable=True)
    # Track the current refresh token family (for refresh token rotation)
    refresh_token_family = Column(String(64), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    lists = relationship("UserList", back_populates="user", cascade="all, delete-orphan")
    searches = relationship("Search", back_populates="user", cascade="all, delete-orphan")
    audit_logs = relationship("AuditLog", back_populates="user")

    def __repr__(self) -> str:
        return f"<User {self.username}>"

    @property
    def has_catalog_credentials(self) -> bool:
        return bool(self.cat_username)

    def invalidate_all_tokens(self):
        """Increment token version to invalidate all existing tokens."""
        self.token_version = (self.token_version or 0) + 1
        self.refresh_token_family = None
