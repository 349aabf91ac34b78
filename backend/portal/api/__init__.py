"""API routes."""
from fastapi import APIRouter

from portal.api import account, admin, auth, health, holds, lists

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["Health"])
api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(account.router, prefix="/account", tags=["Account"])
api_router.include_router(holds.router, tags=["Holds"])
api_router.include_router(lists.router, tags=["Lists"])
api_router.include_router(admin.router, prefix="/admin", tags=["Admin"])
