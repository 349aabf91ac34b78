"""Library account linkage and account deletion."""
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from portal.api.deps import get_current_active_user, get_ils, get_patron
from portal.database import get_db
from portal.models.audit import AuditAction, AuditLog
from portal.models.user import User
from portal.schemas.user import CatalogLogin
from portal.services.catalog_auth import catalog_login, forget_catalog_login
from portal.services.ils import ILSConnection
from portal.services.user_account import purge_user

logger = structlog.get_logger()
router = APIRouter()


@router.post("/catalog-login")
async def store_catalog_login(
    credentials: CatalogLogin,
    request: Request,
    current_user: User = Depends(get_current_active_user),
    catalog: ILSConnection = Depends(get_ils),
    db: AsyncSession = Depends(get_db),
):
    """Check library credentials with the ILS and remember them."""
    patron = await catalog_login(db, catalog, current_user, credentials.cat_username, credentials.cat_password)
    db.add(AuditLog.for_request(
        request,
        AuditAction.CATALOG_LOGIN,
        current_user.id,
        success="success" if patron else "failure",
    ))
    if not patron:
        await db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Patron Login")
    profile = await catalog.get_my_profile(patron)
    return {
        "cat_username": current_user.cat_username,
        "cat_id": current_user.cat_id,
        "profile": profile,
    }


@router.delete("/catalog-login", status_code=status.HTTP_204_NO_CONTENT)
async def delete_catalog_login(
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    await forget_catalog_login(db, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_account(
    request: Request,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete the account and everything stored for it."""
    user_id = current_user.id
    db.add(AuditLog.for_request(request, AuditAction.ACCOUNT_DELETE, None, resource_type="user", resource_id=str(user_id)))
    await purge_user(db, current_user)
    logger.info("Account deleted", user_id=user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/catalog-profile")
async def catalog_profile(
    patron: Dict[str, Any] = Depends(get_patron),
    catalog: ILSConnection = Depends(get_ils),
):
    """Profile the library system holds for the linked account."""
    profile = await catalog.get_my_profile(patron)
    return {"profile": profile, "messages": []}
