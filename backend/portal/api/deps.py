"""API dependencies for authentication, authorization and collaborators."""
from typing import Any, Dict, Optional

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from portal.database import get_db
from portal.models.user import User
from portal.services.auth import AuthService
from portal.services.catalog_auth import stored_catalog_login
from portal.services.ils import ILSConnection, get_ils_connection
from portal.services.mailer import Mailer, get_mailer
from portal.services.oauth2 import OAuth2Server, get_oauth2_server
from portal.services.permissions import PermissionManager, permission_manager
from portal.services.search import SearchRunner, get_solr_connector

logger = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=False)


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Get the current authenticated user from the bearer token.

    Validates token version to ensure tokens haven't been invalidated
    by logout or password change.

    Raises:
        HTTPException: If authentication fails
    """
    if credentials:
        token_data = AuthService.decode_token(credentials.credentials, expected_type="access")
        if token_data:
            user = await AuthService.get_user_by_id(db, token_data.user_id)
            if user and user.is_active:
                if (token_data.token_version or 0) != (user.token_version or 0):
                    logger.warning(
                        "Token version mismatch - token invalidated",
                        user_id=user.id,
                        token_version=token_data.token_version,
                        user_token_version=user.token_version,
                    )
                    raise HTTPException(
                        status_code=status.HTTP_401_UNAUTHORIZED,
                        detail="Token has been invalidated. Please log in again.",
                        headers={"WWW-Authenticate": "Bearer"},
                    )
                request.state.user = user
                return user

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid authentication credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return current_user


async def get_current_superuser(
    current_user: User = Depends(get_current_active_user),
) -> User:
    if not current_user.is_superuser:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Superuser access required",
        )
    return current_user


async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """Get the current user if authenticated, otherwise return None."""
    if credentials is None:
        return None
    try:
        return await get_current_user(request, credentials, db)
    except HTTPException:
        return None


def get_ils() -> ILSConnection:
    return get_ils_connection()


def get_search_runner() -> SearchRunner:
    return SearchRunner(get_solr_connector())


def get_permissions() -> PermissionManager:
    return permission_manager


def get_mail() -> Mailer:
    return get_mailer()


def get_oauth2() -> OAuth2Server:
    return get_oauth2_server()


async def get_patron(
    user: User = Depends(get_current_active_user),
    catalog: ILSConnection = Depends(get_ils),
) -> Dict[str, Any]:
    """
    Patron record for the user's stored library credentials.

    Raises:
        HTTPException: 403 when no working library login is stored
    """
    patron = await stored_catalog_login(catalog, user)
    if not patron:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="catalog_login_required",
        )
    return patron
