"""Administration: tag moderation and search table maintenance."""
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import get_current_superuser
from portal.database import get_db
from portal.models.audit import AuditAction, AuditLog
from portal.models.user import User
from portal.services import user_account

logger = structlog.get_logger()
router = APIRouter()

MIN_SEARCH_AGE_DAYS = 2


class TagDeleteRequest(BaseModel):
    """Delete tag applications by id, or everything matching the filters."""
    ids: Optional[List[int]] = None
    user_id: Optional[int] = None
    tag_id: Optional[int] = None
    resource_id: Optional[int] = None


class ExpireSearchesRequest(BaseModel):
    days: int = Field(MIN_SEARCH_AGE_DAYS)


@router.get("/tags")
async def list_tags(
    user_id: Optional[int] = None,
    tag_id: Optional[int] = None,
    resource_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    admin: User = Depends(get_current_superuser),
    db: AsyncSession = Depends(get_db),
):
    """Tag applications matching the filters, newest first."""
    total, rows = await user_account.list_resource_tags(db, user_id, tag_id, resource_id, limit, offset)
    return {
        "total": total,
        "tags": [
            {
                "id": row.id,
                "tag_id": row.tag_id,
                "tag": row.tag.tag if row.tag else None,
                "resource_id": row.resource_id,
                "record_id": row.resource.record_id if row.resource else None,
                "title": row.resource.title if row.resource else None,
                "user_id": row.user_id,
                "list_id": row.list_id,
                "posted": row.posted.isoformat() if row.posted else None,
            }
            for row in rows
        ],
    }


@router.post("/tags/delete")
async def delete_tags(
    data: TagDeleteRequest,
    request: Request,
    admin: User = Depends(get_current_superuser),
    db: AsyncSession = Depends(get_db),
):
    """Delete tag applications; an empty request deletes nothing."""
    if not data.ids and data.user_id is None and data.tag_id is None and data.resource_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="tags_none_selected")
    deleted = await user_account.delete_resource_tags(db, data.ids, data.user_id, data.tag_id, data.resource_id)
    db.add(AuditLog.for_request(
        request,
        AuditAction.TAG_DELETE,
        admin.id,
        details=data.model_dump(exclude_none=True),
        description=f"Deleted {deleted} tag(s)",
    ))
    logger.info("Tags deleted", admin_id=admin.id, count=deleted)
    return {"deleted": deleted}


@router.post("/maintenance/expire-searches")
async def expire_searches(
    data: ExpireSearchesRequest,
    request: Request,
    admin: User = Depends(get_current_superuser),
    db: AsyncSession = Depends(get_db),
):
    """Delete unsaved searches older than ``days`` days."""
    if data.days < MIN_SEARCH_AGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Expiration age must be at least {MIN_SEARCH_AGE_DAYS} days.",
        )
    deleted = await user_account.expire_searches(db, data.days)
    db.add(AuditLog.for_request(
        request,
        AuditAction.MAINTENANCE,
        admin.id,
        description=f"{deleted} expired searches deleted",
        details={"days": data.days},
    ))
    return {"deleted": deleted, "days": data.days}
