"""Business logic services."""
from portal.services.alma_webhook import AlmaWebhookService
from portal.services.auth import AuthService
from portal.services.holds import HoldsHelper
from portal.services.mailer import Mailer
from portal.services.oauth2 import OAuth2Server
from portal.services.permissions import PermissionManager

__all__ = [
    "AlmaWebhookService",
    "AuthService",
    "HoldsHelper",
    "Mailer",
    "OAuth2Server",
    "PermissionManager",
]
