"""Audit logging model."""
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from portal.database import Base


class AuditAction(str, Enum):
    """Types of auditable actions."""
    REGISTER = "register"
    LOGIN = "login"
    LOGOUT = "logout"
    PASSWORD_CHANGE = "password_change"
    CATALOG_LOGIN = "catalog_login"
    ACCOUNT_DELETE = "account_delete"
    HOLD_PLACE = "hold_place"
    HOLD_CANCEL = "hold_cancel"
    HOLD_UPDATE = "hold_update"
    OAUTH2_AUTHORIZE = "oauth2_authorize"
    WEBHOOK = "webhook"
    TAG_DELETE = "tag_delete"
    MAINTENANCE = "maintenance"


class AuditLog(Base):
    """Audit log for tracking user actions."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Action details
    action = Column(SQLEnum(AuditAction), nullable=False)
    resource_type = Column(String(100), nullable=True)  # "hold", "list", "user", etc.
    resource_id = Column(String(255), nullable=True)

    # Request info
    ip_address = Column(String(50), nullable=True)
    user_agent = Column(String(500), nullable=True)
    endpoint = Column(String(255), nullable=True)
    method = Column(String(10), nullable=True)

    # Details
    description = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    # Status
    success = Column(String(10), default="success", nullable=False)  # "success", "failure"

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="audit_logs")

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} by {self.user_id}>"

    @classmethod
    def for_request(cls, request, action: AuditAction, user_id=None, **kwargs) -> "AuditLog":
        """Build an entry carrying the request's client and endpoint details."""
        return cls(
            user_id=user_id,
            action=action,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            endpoint=str(request.url.path),
            method=request.method,
            **kwargs,
        )
