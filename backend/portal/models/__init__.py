"""Database models."""
from portal.models.user import User
from portal.models.resource import Resource, ResourceTag, Tag, UserList, UserResource
from portal.models.search import Search
from portal.models.access_token import AccessToken, AccessTokenType
from portal.models.audit import AuditLog, AuditAction

__all__ = [
    "User",
    "Resource",
    "ResourceTag",
    "Tag",
    "UserList",
    "UserResource",
    "Search",
    "AccessToken",
    "AccessTokenType",
    "AuditLog",
    "AuditAction",
]
