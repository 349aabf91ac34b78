"""Library account (catalog) credentials stored with portal users."""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from portal.models.user import User
from portal.services.crypt import decrypt_secret, encrypt_secret
from portal.services.ils.connection import ILSConnection
from portal.services.session_store import session_store

logger = structlog.get_logger()

PATRON_KEY = "catalog_patron"


async def catalog_login(
    db: AsyncSession,
    catalog: ILSConnection,
    user: User,
    username: str,
    password: str,
) -> Optional[Dict[str, Any]]:
    """Check credentials with the ILS and store them on ``user``.

    Returns the patron, or None when the ILS rejects the credentials.
    """
    patron = await catalog.patron_login(username, password)
    if not patron:
        logger.info("Catalog login rejected", user_id=user.id)
        return None
    user.cat_username = username
    user.cat_password_enc = encrypt_secret(password) if password else None
    user.cat_id = str(patron.get("id") or username)
    if not user.email and patron.get("email"):
        user.email = patron["email"]
    await db.flush()
    session_store.get(user.id).data[PATRON_KEY] = patron
    logger.info("Catalog credentials stored", user_id=user.id)
    return patron


async def forget_catalog_login(db: AsyncSession, user: User) -> None:
    user.cat_username = None
    user.cat_password_enc = None
    user.cat_id = None
    await db.flush()
    session_store.get(user.id).data.pop(PATRON_KEY, None)


async def stored_catalog_login(catalog: ILSConnection, user: User) -> Optional[Dict[str, Any]]:
    """Patron for the user's stored credentials, or None when there are none.

    The patron is remembered for the user's session so the ILS is asked once.
    """
    if not user.cat_username:
        return None
    data = session_store.get(user.id).data
    cached = data.get(PATRON_KEY)
    if cached and cached.get("cat_username") == user.cat_username:
        return cached
    try:
        password = decrypt_secret(user.cat_password_enc) if user.cat_password_enc else ""
    except ValueError:
        logger.warning("Stored catalog password could not be decrypted", user_id=user.id)
        return None
    patron = await catalog.patron_login(user.cat_username, password)
    if patron:
        data[PATRON_KEY] = patron
    return patron
