"""Hold request schemas."""
from typing import List, Optional

from pydantic import BaseModel, Field


class HoldForm(BaseModel):
    """Values the user enters when placing a hold."""
    pickUpLocation: Optional[str] = None
    requestGroupId: Optional[str] = None
    comment: Optional[str] = Field(None, max_length=2000)
    startDate: Optional[str] = None
    requiredByDate: Optional[str] = None


class CancelHoldsRequest(BaseModel):
    """Cancel all or selected holds; ``confirm=False`` asks for confirmation first."""
    cancelAll: bool = False
    cancelAllIDS: Optional[List[str]] = None
    cancelSelected: bool = False
    selectedIDS: Optional[List[str]] = None
    cancelSelectedIDS: Optional[List[str]] = None
    confirm: Optional[bool] = None


class HoldUpdateDetails(BaseModel):
    """Fields that can change on existing holds."""
    pickUpLocation: Optional[str] = None
    startDate: Optional[str] = None
    requiredBy: Optional[str] = None
    frozen: Optional[str] = None
    frozenThrough: Optional[str] = None


class EditHoldsRequest(BaseModel):
    selectedIDS: List[str] = Field(default_factory=list)
    gatheredDetails: HoldUpdateDetails = Field(default_factory=HoldUpdateDetails)
    updateHolds: bool = False
