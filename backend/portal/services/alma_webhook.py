"""Alma webhook handling.

Alma posts JSON messages signed with a shared secret. Only ``USER``
messages change anything here (create, update or delete a portal user);
other message types are acknowledged as unsupported. Requests without a
body are challenges that must be echoed back.
"""
import json
from typing import Any, Dict, Optional, Tuple, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import settings
from portal.models.user import User
from portal.services.auth import AuthService
from portal.services.crypt import hmac_sha256_base64, verify_signature
from portal.services.mailer import Mailer, MailError
from portal.services.permissions import ForbiddenError, PermissionManager
from portal.services.user_account import purge_user

logger = structlog.get_logger()

USER_PERMISSION = "access.alma.webhook.user"
CHALLENGE_PERMISSION = "access.alma.webhook.challenge"
NOT_IMPLEMENTED_ACTIONS = ("JOB_END", "NOTIFICATION", "LOAN", "REQUEST", "BIB", "ITEM")

Reply = Tuple[Union[list, dict], int]


def _message(text: str, status: int) -> Reply:
    return [text], status


def check_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    """Compare ``X-Exl-Signature`` with the HMAC of the raw body.

    Raises:
        ForbiddenError: if the signature does not match
    """
    calculated = hmac_sha256_base64(body, secret or "")
    if not signature or not verify_signature(calculated, signature):
        logger.warning(
            "Alma webhook signature mismatch",
            given=signature,
            calculated=calculated,
        )
        raise ForbiddenError("signature")


def username_from_user(alma_user: Dict[str, Any], id_type: Optional[str]) -> Optional[str]:
    """Identifier of the configured type, else the primary id."""
    for identifier in alma_user.get("user_identifier") or []:
        hook_type = (identifier.get("id_type") or {}).get("value")
        if hook_type is not None and hook_type == id_type and identifier.get("value"):
            return identifier["value"]
    return alma_user.get("primary_id")


def preferred_email(alma_user: Dict[str, Any]) -> Optional[str]:
    for email in (alma_user.get("contact_info") or {}).get("email") or []:
        if email.get("preferred"):
            return email.get("email_address")
    return None


class AlmaWebhookService:
    """Dispatches verified webhook messages."""

    def __init__(
        self,
        db: AsyncSession,
        mailer: Mailer,
        permissions: PermissionManager,
        secret: Optional[str] = None,
        id_type: Optional[str] = None,
    ):
        self.db = db
        self.mailer = mailer
        self.permissions = permissions
        self.secret = settings.ALMA_WEBHOOK_SECRET if secret is None else secret
        self.id_type = settings.ALMA_NEW_USER_ID_TYPE if id_type is None else id_type

    async def handle(
        self,
        method: str,
        body: bytes,
        signature: Optional[str],
        challenge: Optional[str] = None,
        user: Optional[User] = None,
        ip: Optional[str] = None,
    ) -> Reply:
        """Process one webhook request and return ``(payload, status)``."""
        message: Dict[str, Any] = {}
        if method == "POST" and body:
            try:
                check_signature(body, signature, self.secret)
            except ForbiddenError:
                return _message(
                    "Access to Alma Webhook is forbidden. The message signature is not correct.",
                    403,
                )
            try:
                message = json.loads(body)
            except ValueError:
                message = {}
            if not isinstance(message, dict):
                message = {}

        action = message.get("action")
        if action == "USER":
            if not self.permissions.is_granted(USER_PERMISSION, user, ip):
                return _message(
                    f"Access to Alma Webhook 'USER' forbidden. Set permission '{USER_PERMISSION}'.",
                    403,
                )
            return await self.webhook_user(message)
        if action in NOT_IMPLEMENTED_ACTIONS:
            return _message(f"{action} Alma Webhook is not (yet) implemented.", 400)

        if not self.permissions.is_granted(CHALLENGE_PERMISSION, user, ip):
            return _message(
                f"Access to Alma Webhook challenge forbidden. Set permission '{CHALLENGE_PERMISSION}'.",
                403,
            )
        return self.webhook_challenge(challenge)

    def webhook_challenge(self, challenge: Optional[str]) -> Reply:
        if challenge and challenge.strip():
            return {"challenge": challenge}, 200
        return {
            "error": "GET parameter 'challenge' is empty, not set or not available "
                     "when receiving webhook challenge from Alma."
        }, 500

    async def webhook_user(self, message: Dict[str, Any]) -> Reply:
        webhook_user = message.get("webhook_user") or {}
        method = webhook_user.get("method")
        alma_user = webhook_user.get("user") or {}
        primary_id = alma_user.get("primary_id")

        if method in ("CREATE", "UPDATE"):
            return await self._create_or_update(method, alma_user, primary_id)
        if method == "DELETE":
            return await self._delete(primary_id)
        return _message(f"Unsupported USER webhook method '{method}'.", 400)

    async def _create_or_update(self, method: str, alma_user: Dict[str, Any], primary_id) -> Reply:
        username = username_from_user(alma_user, self.id_type)
        verb = method.lower() + "d"
        if method == "CREATE":
            user = await AuthService.get_user_by_username(self.db, username) if username else None
            if user is None and username:
                user = await AuthService.create_user(self.db, username, None, auth_method="database")
        else:
            user = await AuthService.get_user_by_cat_id(self.db, primary_id) if primary_id else None

        if user is None:
            return _message(
                f"User with primary ID '{primary_id}' | username '{username}' was not found "
                f"and therefore could not be {verb}.",
                404,
            )

        try:
            user.username = username
            user.firstname = alma_user.get("first_name")
            user.lastname = alma_user.get("last_name")
            user.cat_id = primary_id
            user.cat_username = username
            email = preferred_email(alma_user)
            if email != user.email:
                user.email = email
                user.email_verified = None
            await self.db.flush()
        except Exception as e:
            await self.db.rollback()
            logger.error("Alma user could not be saved", primary_id=primary_id, error=str(e))
            return _message(
                f"Error when saving user with primary ID '{primary_id}' | username "
                f"'{username}': {e}.",
                400,
            )

        if method == "CREATE":
            await self.send_set_password_email(user)
        logger.info("Alma user synchronised", method=method, primary_id=primary_id, user_id=user.id)
        return _message(
            f"Successfully {verb} user with primary ID '{primary_id}' | username '{username}'.",
            200,
        )

    async def _delete(self, primary_id) -> Reply:
        user = await AuthService.get_user_by_cat_id(self.db, primary_id) if primary_id else None
        if user is None:
            return _message(
                f"User with primary ID '{primary_id}' was not found and therefore could not be deleted.",
                404,
            )
        try:
            await purge_user(self.db, user)
        except Exception as e:
            await self.db.rollback()
            logger.error("Alma user could not be deleted", primary_id=primary_id, error=str(e))
            return _message(
                f"Problem when deleting user with '{primary_id}'. Please check the status of the user.",
                400,
            )
        return _message(f"Successfully deleted user with primary ID '{primary_id}'.", 200)

    async def send_set_password_email(self, user: User) -> None:
        """Welcome mail with a link for choosing a password; failures are logged."""
        verify_hash = AuthService.generate_verify_hash(user)
        await self.db.flush()
        if not user.email:
            logger.info("No email address for new Alma user", user_id=user.id)
            return
        url = (
            f"{settings.SITE_URL}/account/verify?hash={verify_hash}"
            f"&auth_method={user.auth_method or 'database'}"
        )
        name = " ".join(p for p in (user.firstname, user.lastname) if p) or user.username
        body = (
            f"Dear {name},\n\n"
            f"an account at {settings.SITE_TITLE} has been created for you.\n"
            f"Your username is: {user.username}\n\n"
            f"Please follow this link to set your password:\n{url}\n"
        )
        try:
            await self.mailer.send(
                user.email,
                settings.SITE_EMAIL,
                f"Welcome to {settings.SITE_TITLE}",
                body,
            )
        except MailError as e:
            logger.error(
                "Could not send the set-password email",
                cat_id=user.cat_id,
                username=user.username,
                error=str(e),
            )
