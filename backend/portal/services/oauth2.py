"""OAuth2 authorization server with OpenID Connect identity tokens.

Only the authorization code grant is supported. Codes are stored hashed and
used once; access tokens are RS256 JWTs whose ``jti`` is recorded so that
they can be revoked. Signing and key handling are done by python-jose.
"""
import base64
import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog
from cryptography.hazmat.primitives import serialization
from jose import JWTError, jwk, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import settings
from portal.models.access_token import AccessToken, AccessTokenType
from portal.models.user import User
from portal.services.auth import AuthService
from portal.services.catalog_auth import stored_catalog_login
from portal.services.crypt import verify_signature
from portal.services.ils import ILSConnection, ILSException

logger = structlog.get_logger()

ALGORITHM = "RS256"

# Claims released for each scope
SCOPE_CLAIMS: Dict[str, List[str]] = {
    "openid": ["nonce"],
    "profile": ["name", "given_name", "family_name", "locale"],
    "email": ["email"],
    "id": ["id"],
    "username": ["username"],
    "cat_id": ["cat_id"],
    "library_user_id": ["library_user_id"],
    "block_status": ["block_status"],
}


class OAuth2Error(Exception):
    """OAuth2 protocol error rendered as ``{error, error_description}``."""

    def __init__(self, error: str, description: str, status: int = 400, redirect_uri: Optional[str] = None):
        super().__init__(description)
        self.error = error
        self.description = description
        self.status = status
        self.redirect_uri = redirect_uri

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.error, "error_description": self.description}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite returns naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _hash_code(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


def pkce_challenge(verifier: str, method: str = "S256") -> str:
    if method == "plain":
        return verifier
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def library_user_id(cat_username: Optional[str], salt: str) -> Optional[str]:
    """Stable pseudonymous id for the library account."""
    if not cat_username:
        return None
    return hashlib.sha256((cat_username + salt).encode()).hexdigest()


def _read_key(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    key_path = Path(path)
    if not key_path.exists():
        logger.warning("OAuth2 key file missing", path=path)
        return None
    return key_path.read_text()


class OAuth2Server:
    """Clients, scopes and keys plus the grant logic."""

    def __init__(
        self,
        clients: Optional[Dict[str, Dict[str, Any]]] = None,
        scopes: Optional[Dict[str, Dict[str, Any]]] = None,
        private_key: Optional[str] = None,
        public_key: Optional[str] = None,
        issuer: Optional[str] = None,
    ):
        self.clients = settings.OAUTH2_CLIENTS if clients is None else clients
        self.scopes = settings.OAUTH2_SCOPES if scopes is None else scopes
        self.private_key = private_key or _read_key(settings.OAUTH2_PRIVATE_KEY_PATH)
        self.public_key = public_key or _read_key(settings.OAUTH2_PUBLIC_KEY_PATH)
        if self.private_key and not self.public_key:
            self.public_key = (
                serialization.load_pem_private_key(self.private_key.encode(), password=None)
                .public_key()
                .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
                .decode()
            )
        self.issuer = (issuer or settings.SITE_URL).rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.private_key and self.public_key)

    @property
    def key_id(self) -> str:
        return hashlib.sha256(self.public_key.encode()).hexdigest()[:16]

    def _require_keys(self) -> None:
        if not self.configured:
            raise OAuth2Error("server_error", "OAuth2 server keys are not configured", 500)

    # Clients and scopes

    def get_client(self, client_id: Optional[str]) -> Dict[str, Any]:
        client = self.clients.get(client_id or "")
        if not client:
            raise OAuth2Error("invalid_client", f"Invalid OAuth2 client {client_id}", 400)
        return client

    @staticmethod
    def redirect_uris(client: Dict[str, Any]) -> List[str]:
        uris = client.get("redirectUri") or []
        return [uris] if isinstance(uris, str) else list(uris)

    def authenticate_client(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        basic_auth: Optional[str] = None,
    ) -> Tuple[str, Dict[str, Any]]:
        """Check ``client_secret_post`` or ``client_secret_basic`` credentials."""
        if basic_auth and basic_auth.lower().startswith("basic "):
            try:
                decoded = base64.b64decode(basic_auth[6:]).decode()
                client_id, _, client_secret = decoded.partition(":")
            except (ValueError, UnicodeDecodeError):
                raise OAuth2Error("invalid_client", "Client authentication failed", 401)
        try:
            client = self.get_client(client_id)
        except OAuth2Error:
            raise OAuth2Error("invalid_client", "Client authentication failed", 401)
        if not client.get("isConfidential", False):
            return client_id, client
        stored = client.get("secret") or ""
        if stored.startswith("$2"):
            valid = bool(client_secret) and AuthService.verify_password(client_secret, stored)
        else:
            valid = bool(client_secret) and verify_signature(stored, client_secret)
        if not valid:
            logger.info("OAuth2 client authentication failed", client_id=client_id)
            raise OAuth2Error("invalid_client", "Client authentication failed", 401)
        return client_id, client

    def finalize_scopes(self, requested: str, client: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Known scopes of a request; those the client may not have are hidden."""
        allowed = client.get("allowedScopes")
        result = []
        for name in (requested or "").split():
            if name not in self.scopes:
                raise OAuth2Error("invalid_scope", f"The requested scope is invalid: {name}")
            if any(s["id"] == name for s in result):
                continue
            result.append({
                "id": name,
                "description": self.scopes[name].get("description", name),
                "ils": bool(self.scopes[name].get("ils")),
                "hidden": bool(allowed) and name not in allowed,
            })
        return result

    # Authorization endpoint

    def validate_authorize_request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        client_id = params.get("client_id")
        client = self.get_client(client_id)
        registered = self.redirect_uris(client)
        redirect_uri = params.get("redirect_uri")
        if not redirect_uri and len(registered) == 1:
            redirect_uri = registered[0]
        if not redirect_uri or redirect_uri not in registered:
            raise OAuth2Error("invalid_client", "Client redirect URI does not match", 401)
        state = params.get("state")
        if params.get("response_type") != "code":
            raise OAuth2Error(
                "unsupported_response_type",
                "The authorization server does not support this response type",
                redirect_uri=redirect_uri,
            )
        try:
            scopes = self.finalize_scopes(params.get("scope") or "", client)
        except OAuth2Error as e:
            e.redirect_uri = redirect_uri
            raise
        challenge = params.get("code_challenge")
        method = params.get("code_challenge_method") or ("S256" if challenge else None)
        if challenge and method not in ("S256", "plain"):
            raise OAuth2Error("invalid_request", "Code challenge method must be S256 or plain", redirect_uri=redirect_uri)
        if not challenge and not client.get("isConfidential", False):
            raise OAuth2Error("invalid_request", "Public clients must use PKCE", redirect_uri=redirect_uri)
        return {
            "client_id": client_id,
            "client_name": client.get("name", client_id),
            "redirect_uri": redirect_uri,
            "scopes": scopes,
            "state": state,
            "nonce": params.get("nonce"),
            "code_challenge": challenge,
            "code_challenge_method": method,
        }

    def consent(self, auth_request: Dict[str, Any], user: User) -> Dict[str, Any]:
        """What the user is asked to approve."""
        field = settings.OAUTH2_USER_IDENTIFIER_FIELD
        return {
            "client": {"id": auth_request["client_id"], "name": auth_request["client_name"]},
            "scopes": auth_request["scopes"],
            "state": auth_request["state"],
            "redirect_uri": auth_request["redirect_uri"],
            "user": {"username": user.username, "identifier": str(getattr(user, field, user.id))},
            "userIdentifierField": field,
        }

    async def create_auth_code(self, db: AsyncSession, user: User, auth_request: Dict[str, Any]) -> str:
        code = secrets.token_urlsafe(32)
        granted = [s["id"] for s in auth_request["scopes"] if not s["hidden"]]
        db.add(AccessToken(
            id=_hash_code(code),
            type=AccessTokenType.AUTH_CODE,
            user_id=user.id,
            data={
                "client_id": auth_request["client_id"],
                "redirect_uri": auth_request["redirect_uri"],
                "scopes": granted,
                "nonce": auth_request.get("nonce"),
                "code_challenge": auth_request.get("code_challenge"),
                "code_challenge_method": auth_request.get("code_challenge_method"),
            },
            expires_at=_now() + timedelta(minutes=settings.OAUTH2_AUTH_CODE_TTL_MINUTES),
        ))
        await db.flush()
        logger.info("OAuth2 authorization code issued", user_id=user.id, client_id=auth_request["client_id"])
        return code

    # Token endpoint

    async def exchange_code(
        self,
        db: AsyncSession,
        params: Dict[str, Any],
        basic_auth: Optional[str],
        catalog: ILSConnection,
    ) -> Dict[str, Any]:
        self._require_keys()
        if params.get("grant_type") != "authorization_code":
            raise OAuth2Error("unsupported_grant_type", "The authorization grant type is not supported")
        client_id, _ = self.authenticate_client(
            params.get("client_id"), params.get("client_secret"), basic_auth
        )

        code = params.get("code")
        if not code:
            raise OAuth2Error("invalid_request", "Check the `code` parameter")
        stored = await db.get(AccessToken, (_hash_code(code), AccessTokenType.AUTH_CODE))
        if stored is None or stored.revoked:
            raise OAuth2Error("invalid_grant", "Authorization code has been revoked")
        if _aware(stored.expires_at) < _now():
            raise OAuth2Error("invalid_grant", "Authorization code has expired")
        data = stored.data or {}
        if data.get("client_id") != client_id:
            raise OAuth2Error("invalid_grant", "Authorization code was not issued to this client")
        if params.get("redirect_uri") and params["redirect_uri"] != data.get("redirect_uri"):
            raise OAuth2Error("invalid_client", "Invalid redirect URI", 401)
        if data.get("code_challenge"):
            verifier = params.get("code_verifier")
            if not verifier:
                raise OAuth2Error("invalid_request", "Check the `code_verifier` parameter")
            expected = pkce_challenge(verifier, data.get("code_challenge_method") or "S256")
            if not verify_signature(data["code_challenge"], expected):
                raise OAuth2Error("invalid_grant", "Failed to verify `code_verifier`.")
        stored.revoked = True

        user = await db.get(User, stored.user_id)
        if user is None or not user.is_active:
            raise OAuth2Error("access_denied", "User does not exist anymore", 401)
        scopes = data.get("scopes") or []
        response = {
            "token_type": "Bearer",
            "expires_in": settings.OAUTH2_ACCESS_TOKEN_TTL_MINUTES * 60,
            "access_token": await self._issue_access_token(db, user, client_id, scopes, data.get("nonce")),
        }
        if "openid" in scopes:
            claims = await self.user_claims(user, scopes, catalog, data.get("nonce"))
            response["id_token"] = self._id_token(user, client_id, claims)
        await db.flush()
        logger.info("OAuth2 tokens issued", user_id=user.id, client_id=client_id, scopes=scopes)
        return response

    def subject(self, user: User) -> str:
        return str(getattr(user, settings.OAUTH2_USER_IDENTIFIER_FIELD, None) or user.id)

    def _sign(self, claims: Dict[str, Any]) -> str:
        return jwt.encode(claims, self.private_key, algorithm=ALGORITHM, headers={"kid": self.key_id})

    async def _issue_access_token(
        self, db: AsyncSession, user: User, client_id: str, scopes: List[str], nonce: Optional[str]
    ) -> str:
        now = _now()
        expires = now + timedelta(minutes=settings.OAUTH2_ACCESS_TOKEN_TTL_MINUTES)
        jti = secrets.token_hex(20)
        db.add(AccessToken(
            id=jti,
            type=AccessTokenType.ACCESS_TOKEN,
            user_id=user.id,
            data={"client_id": client_id, "scopes": scopes, "nonce": nonce},
            expires_at=expires,
        ))
        return self._sign({
            "iss": self.issuer,
            "aud": client_id,
            "sub": self.subject(user),
            "jti": jti,
            "iat": int(now.timestamp()),
            "nbf": int(now.timestamp()),
            "exp": int(expires.timestamp()),
            "scopes": scopes,
        })

    def _id_token(self, user: User, client_id: str, claims: Dict[str, Any]) -> str:
        now = _now()
        payload = {k: v for k, v in claims.items() if v is not None}
        payload.update({
            "iss": self.issuer,
            "aud": client_id,
            "sub": self.subject(user),
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=settings.OAUTH2_ACCESS_TOKEN_TTL_MINUTES)).timestamp()),
            "auth_time": int((_aware(user.last_login_at) or now).timestamp()),
        })
        return self._sign(payload)

    # Claims and user info

    async def user_claims(
        self,
        user: User,
        scopes: List[str],
        catalog: ILSConnection,
        nonce: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Claims released for ``scopes``."""
        wanted = {claim for scope in scopes for claim in SCOPE_CLAIMS.get(scope, [])}
        values: Dict[str, Any] = {
            "id": user.id,
            "username": user.username,
            "name": " ".join(p for p in (user.firstname, user.lastname) if p) or None,
            "given_name": user.firstname,
            "family_name": user.lastname,
            "locale": user.last_language,
            "email": user.email,
            "cat_id": user.cat_id,
            "library_user_id": library_user_id(user.cat_username, settings.OAUTH2_LIBRARY_USER_ID_SALT),
            "nonce": nonce,
        }
        if "block_status" in wanted:
            values["block_status"] = await self._block_status(user, catalog)
        return {claim: values.get(claim) for claim in sorted(wanted)}

    async def _block_status(self, user: User, catalog: ILSConnection) -> Optional[bool]:
        """True when the library account is blocked, None when unknown."""
        try:
            patron = await stored_catalog_login(catalog, user)
            if not patron or not catalog.check_capability("get_account_blocks"):
                return None
            return bool(await catalog.get_account_blocks(patron))
        except ILSException as e:
            logger.warning("Block status unavailable", user_id=user.id, error=str(e))
            return None

    async def validate_bearer(self, db: AsyncSession, authorization: Optional[str]) -> AccessToken:
        """Stored token for a bearer access token."""
        self._require_keys()
        if not authorization or not authorization.lower().startswith("bearer "):
            raise OAuth2Error("access_denied", "Missing \"Bearer\" token", 401)
        try:
            claims = jwt.decode(
                authorization[7:].strip(),
                self.public_key,
                algorithms=[ALGORITHM],
                options={"verify_aud": False},
            )
        except JWTError:
            raise OAuth2Error("access_denied", "Access token could not be verified", 401)
        stored = await db.get(AccessToken, (claims.get("jti", ""), AccessTokenType.ACCESS_TOKEN))
        if stored is None or stored.revoked:
            raise OAuth2Error("access_denied", "Access token has been revoked", 401)
        return stored

    async def userinfo(self, db: AsyncSession, authorization: Optional[str], catalog: ILSConnection) -> Dict[str, Any]:
        stored = await self.validate_bearer(db, authorization)
        data = stored.data or {}
        scopes = data.get("scopes") or []
        if "openid" not in scopes:
            raise OAuth2Error("invalid_request", "Not an OpenID request")
        user = await db.get(User, stored.user_id)
        if user is None:
            raise OAuth2Error("access_denied", "User does not exist anymore", 401)
        claims = await self.user_claims(user, scopes, catalog, data.get("nonce"))
        result = {k: v for k, v in claims.items() if v is not None}
        result["sub"] = self.subject(user)
        return result

    # Discovery

    def jwks(self) -> Dict[str, Any]:
        key = jwk.construct(self.public_key, ALGORITHM).to_dict()
        key.update({"kid": self.key_id, "use": "sig"})
        return {"keys": [key]}

    def openid_configuration(self, base_url: str) -> Dict[str, Any]:
        base_url = base_url.rstrip("/")
        configuration = {
            "issuer": self.issuer,
            "authorization_endpoint": f"{base_url}/oauth2/authorize",
            "token_endpoint": f"{base_url}/oauth2/token",
            "userinfo_endpoint": f"{base_url}/oauth2/userinfo",
            "jwks_uri": f"{base_url}/oauth2/jwks",
            "response_types_supported": ["code"],
            "grant_types_supported": ["authorization_code"],
            "subject_types_supported": ["public"],
            "id_token_signing_alg_values_supported": [ALGORITHM],
            "token_endpoint_auth_methods_supported": ["client_secret_post", "client_secret_basic"],
            "code_challenge_methods_supported": ["S256", "plain"],
        }
        if settings.OAUTH2_DOCUMENTATION_URL:
            configuration["service_documentation"] = settings.OAUTH2_DOCUMENTATION_URL
        if self.scopes:
            configuration["scopes_supported"] = list(self.scopes)
        return configuration


@lru_cache()
def get_oauth2_server() -> OAuth2Server:
    return OAuth2Server()
