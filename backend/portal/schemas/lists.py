"""List, favorite, tag and saved search schemas."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ListCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    public: bool = False


class ListUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    public: Optional[bool] = None


class ListResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    title: str
    description: Optional[str] = None
    public: bool
    created_at: datetime
    count: Optional[int] = None


class SaveRecordRequest(BaseModel):
    """Save a record to a list; without ``list_id`` a list is chosen or created."""
    record_id: str = Field(..., min_length=1, max_length=255)
    source: str = "Solr"
    title: Optional[str] = Field(None, max_length=255)
    list_id: Optional[int] = None
    new_list_title: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = None
    tags: Optional[str] = None


class RemoveRecordsRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)
    source: str = "Solr"


class TagRequest(BaseModel):
    tags: str = Field(..., min_length=1)
    source: str = "Solr"


class EntryResponse(BaseModel):
    record_id: str
    source: str
    title: str
    author: Optional[str] = None
    year: Optional[int] = None
    list_id: Optional[int] = None
    notes: Optional[str] = None
    saved: datetime


class SearchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    saved: bool
    title: Optional[str] = None
    search_params: Dict[str, Any]
    result_count: Optional[int] = None
    created_at: datetime


class SearchUpdate(BaseModel):
    saved: bool
    title: Optional[str] = Field(None, max_length=255)


class TagCount(BaseModel):
    tag: str
    count: int
