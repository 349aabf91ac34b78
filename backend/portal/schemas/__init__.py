"""Pydantic schemas for request/response validation."""
from portal.schemas.holds import (
    CancelHoldsRequest,
    EditHoldsRequest,
    HoldForm,
    HoldUpdateDetails,
)
from portal.schemas.lists import (
    EntryResponse,
    ListCreate,
    ListResponse,
    ListUpdate,
    RemoveRecordsRequest,
    SaveRecordRequest,
    SearchResponse,
    SearchUpdate,
    TagCount,
    TagRequest,
)
from portal.schemas.user import (
    CatalogLogin,
    PasswordChange,
    PasswordReset,
    Token,
    TokenData,
    UserCreate,
    UserLogin,
    UserResponse,
    UserUpdate,
)

__all__ = [
    # Holds
    "CancelHoldsRequest",
    "EditHoldsRequest",
    "HoldForm",
    "HoldUpdateDetails",
    # Lists
    "EntryResponse",
    "ListCreate",
    "ListResponse",
    "ListUpdate",
    "RemoveRecordsRequest",
    "SaveRecordRequest",
    "SearchResponse",
    "SearchUpdate",
    "TagCount",
    "TagRequest",
    # Users
    "CatalogLogin",
    "PasswordChange",
    "PasswordReset",
    "Token",
    "TokenData",
    "UserCreate",
    "UserLogin",
    "UserResponse",
    "UserUpdate",
]
