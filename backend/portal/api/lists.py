"""User lists, favorites, tags and search history."""
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import get_current_active_user, get_optional_user
from portal.database import get_db
from portal.models.resource import Resource, UserList, UserResource
from portal.models.user import User
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
from portal.services import user_account
from portal.services.user_account import ListPermissionError

logger = structlog.get_logger()
router = APIRouter()


def _entry(resource: Resource, entry: UserResource) -> EntryResponse:
    return EntryResponse(
        record_id=resource.record_id,
        source=resource.source,
        title=resource.title,
        author=resource.author,
        year=resource.year,
        list_id=entry.list_id,
        notes=entry.notes,
        saved=entry.saved,
    )


async def _get_list(db: AsyncSession, list_id: int) -> UserList:
    user_list = await user_account.get_list(db, list_id)
    if user_list is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="List not found")
    return user_list


def _forbidden(e: ListPermissionError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))


# Lists

@router.get("/lists", response_model=List[ListResponse])
async def get_lists(
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    lists = await user_account.get_user_lists(db, current_user)
    return [
        ListResponse.model_validate(user_list).model_copy(update={"count": count})
        for user_list, count in lists
    ]


@router.post("/lists", response_model=ListResponse, status_code=status.HTTP_201_CREATED)
async def create_list(
    data: ListCreate,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    user_list = await user_account.create_list(db, current_user, data.title, data.description, data.public)
    return ListResponse.model_validate(user_list).model_copy(update={"count": 0})


@router.get("/lists/{list_id}")
async def get_list(
    list_id: int,
    user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """A list and its records; public lists are readable by anyone."""
    user_list = await _get_list(db, list_id)
    try:
        user_account.check_list_readable(user_list, user)
    except ListPermissionError as e:
        raise _forbidden(e)
    entries = await user_account.get_list_entries(db, user_list)
    return {
        "list": ListResponse.model_validate(user_list).model_copy(update={"count": len(entries)}),
        "records": [_entry(resource, entry) for resource, entry in entries],
    }


@router.patch("/lists/{list_id}", response_model=ListResponse)
async def update_list(
    list_id: int,
    data: ListUpdate,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    user_list = await _get_list(db, list_id)
    try:
        user_list = await user_account.update_list(db, current_user, user_list, **data.model_dump(exclude_unset=True))
    except ListPermissionError as e:
        raise _forbidden(e)
    return ListResponse.model_validate(user_list)


@router.delete("/lists/{list_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_list(
    list_id: int,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    user_list = await _get_list(db, list_id)
    try:
        await user_account.delete_list(db, current_user, user_list)
    except ListPermissionError as e:
        raise _forbidden(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/lists/{list_id}/remove")
async def remove_records(
    list_id: int,
    data: RemoveRecordsRequest,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """Remove records (and their tags in this list) from a list."""
    user_list = await _get_list(db, list_id)
    try:
        removed = await user_account.remove_records(db, current_user, user_list, data.ids, data.source)
    except ListPermissionError as e:
        raise _forbidden(e)
    return {"removed": removed}


# Favorites

@router.get("/favorites", response_model=List[EntryResponse])
async def get_favorites(
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """Every record the user has saved, in any list."""
    return [_entry(resource, entry) for resource, entry in await user_account.get_favorites(db, current_user)]


@router.post("/favorites", status_code=status.HTTP_201_CREATED)
async def save_record(
    data: SaveRecordRequest,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Save a record to a list, creating the list when needed."""
    try:
        result = await user_account.save_record(
            db,
            current_user,
            data.record_id,
            source=data.source,
            title=data.title or "",
            list_id=data.list_id,
            new_list_title=data.new_list_title,
            notes=data.notes,
            tags=data.tags,
        )
    except LookupError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="List not found")
    except ListPermissionError as e:
        raise _forbidden(e)
    logger.info("Record saved", user_id=current_user.id, record_id=data.record_id, list_id=result["list_id"])
    return result


# Tags

@router.get("/tags", response_model=List[TagCount])
async def get_tags(
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    return await user_account.get_user_tags(db, current_user)


@router.post("/records/{record_id}/tags")
async def tag_record(
    record_id: str,
    data: TagRequest,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """Add tags to a record; quoted phrases stay together."""
    tags = await user_account.tag_record(db, current_user, record_id, data.tags, data.source)
    return {"tags": tags}


@router.delete("/records/{record_id}/tags/{tag}")
async def remove_tag(
    record_id: str,
    tag: str,
    source: str = Query("Solr"),
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    removed = await user_account.remove_tag(db, current_user, record_id, tag, source)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tag not found")
    return {"removed": removed}


# Search history

@router.get("/searches", response_model=List[SearchResponse])
async def get_searches(
    saved: Optional[bool] = None,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """Search history, or only saved (or unsaved) searches."""
    return await user_account.get_searches(db, current_user, saved)


@router.patch("/searches/{search_id}", response_model=SearchResponse)
async def update_search(
    search_id: int,
    data: SearchUpdate,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """Save or unsave a search."""
    search = await user_account.get_user_search(db, current_user, search_id)
    if search is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Search not found")
    search.saved = data.saved
    if data.title is not None:
        search.title = data.title
    await db.flush()
    return search


@router.delete("/searches/{search_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_search(
    search_id: int,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    search = await user_account.get_user_search(db, current_user, search_id)
    if search is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Search not found")
    await db.delete(search)
    await db.flush()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
