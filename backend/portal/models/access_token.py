"""Stored OAuth2 authorization codes and access tokens."""
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, JSON, String

from portal.database import Base


class AccessTokenType(str, Enum):
    """Kinds of stored tokens."""
    AUTH_CODE = "oauth2_auth_code"
    ACCESS_TOKEN = "oauth2_access_token"


class AccessToken(Base):
    """Authorization code or access token; ``id`` is the code hash or token jti."""

    __tablename__ = "access_tokens"

    id = Column(String(255), primary_key=True)
    type = Column(SQLEnum(AccessTokenType), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    data = Column(JSON, nullable=True)
    revoked = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    def __repr__(self) -> str:
        return f"<AccessToken {self.type} user={self.user_id}>"
