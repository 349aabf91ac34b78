"""Alma ILS webhook endpoint."""
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import client_ip, get_mail, get_optional_user, get_permissions
from portal.database import get_db
from portal.models.audit import AuditAction, AuditLog
from portal.models.user import User
from portal.services.alma_webhook import AlmaWebhookService
from portal.services.mailer import Mailer
from portal.services.permissions import PermissionManager

logger = structlog.get_logger()
router = APIRouter()


@router.api_route("/alma/webhook", methods=["GET", "POST"])
async def webhook(
    request: Request,
    challenge: Optional[str] = None,
    user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mail),
    permissions: PermissionManager = Depends(get_permissions),
):
    """
    Receive Alma webhook messages.

    Signed POST messages are dispatched on their ``action``; anything else
    is a challenge that is echoed back.
    """
    body = await request.body()
    service = AlmaWebhookService(db, mailer, permissions)
    payload, status_code = await service.handle(
        request.method,
        body,
        request.headers.get("X-Exl-Signature"),
        challenge=challenge,
        user=user,
        ip=client_ip(request),
    )
    if body:
        db.add(AuditLog.for_request(
            request,
            AuditAction.WEBHOOK,
            user.id if user else None,
            description="Alma webhook",
            details={"status": status_code},
            success="success" if status_code < 400 else "failure",
        ))
    logger.info("Alma webhook handled", method=request.method, status=status_code)
    return JSONResponse(payload, status_code=status_code)
