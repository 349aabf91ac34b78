"""OAuth2 / OpenID Connect endpoints."""
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import get_ils, get_oauth2, get_optional_user
from portal.database import get_db
from portal.models.audit import AuditAction, AuditLog
from portal.models.user import User
from portal.services.ils import ILSConnection
from portal.services.oauth2 import OAuth2Error, OAuth2Server

logger = structlog.get_logger()
router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Authorization, Content-Type",
    "Access-Control-Max-Age": "86400",
}


def json_response(data: Dict[str, Any], status_code: int = 200) -> JSONResponse:
    return JSONResponse(data, status_code=status_code, headers=CORS_HEADERS)


def error_response(e: OAuth2Error) -> Response:
    """Redirect the error back to the client when its redirect URI is known."""
    if e.redirect_uri:
        return redirect(e.redirect_uri, e.to_dict())
    return json_response(e.to_dict(), e.status)


def redirect(uri: str, params: Dict[str, Optional[str]]) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    separator = "&" if "?" in uri else "?"
    return RedirectResponse(f"{uri}{separator}{query}", status_code=302)


async def _params(request: Request) -> Dict[str, Any]:
    params: Dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({k: v for k, v in form.items() if isinstance(v, str)})
    return params


@router.options("/oauth2/{endpoint}")
@router.options("/.well-known/openid-configuration")
async def oauth2_options(endpoint: Optional[str] = None):
    return Response(status_code=204, headers=CORS_HEADERS)


@router.get("/oauth2/authorize")
async def authorize(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    server: OAuth2Server = Depends(get_oauth2),
):
    """Validate an authorization request and describe what the user approves."""
    try:
        auth_request = server.validate_authorize_request(dict(request.query_params))
    except OAuth2Error as e:
        logger.info("OAuth2 authorization request rejected", error=e.error, description=e.description)
        return error_response(e)

    if user is None:
        return json_response({
            "error": "login_required",
            "error_description": "Log in to continue",
            "followup": str(request.url),
        }, 401)
    return json_response(server.consent(auth_request, user))


@router.post("/oauth2/authorize")
async def authorize_decision(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    server: OAuth2Server = Depends(get_oauth2),
    db: AsyncSession = Depends(get_db),
):
    """Record the user's decision; ``allow`` issues a code, anything else denies."""
    params = await _params(request)
    try:
        auth_request = server.validate_authorize_request(params)
    except OAuth2Error as e:
        return error_response(e)
    if user is None:
        return json_response({"error": "login_required", "error_description": "Log in to continue"}, 401)

    state = auth_request["state"]
    if not params.get("allow") or params.get("deny"):
        db.add(AuditLog.for_request(
            request, AuditAction.OAUTH2_AUTHORIZE, user.id,
            details={"client_id": auth_request["client_id"]}, success="failure",
        ))
        return redirect(auth_request["redirect_uri"], {
            "error": "access_denied",
            "error_description": "The user denied the request",
            "state": state,
        })

    code = await server.create_auth_code(db, user, auth_request)
    db.add(AuditLog.for_request(
        request, AuditAction.OAUTH2_AUTHORIZE, user.id,
        details={"client_id": auth_request["client_id"], "scopes": [s["id"] for s in auth_request["scopes"]]},
    ))
    return redirect(auth_request["redirect_uri"], {"code": code, "state": state})


@router.post("/oauth2/token")
async def token(
    request: Request,
    server: OAuth2Server = Depends(get_oauth2),
    catalog: ILSConnection = Depends(get_ils),
    db: AsyncSession = Depends(get_db),
):
    """Exchange an authorization code for tokens."""
    params = await _params(request)
    try:
        result = await server.exchange_code(db, params, request.headers.get("Authorization"), catalog)
    except OAuth2Error as e:
        logger.info("OAuth2 token request rejected", error=e.error, description=e.description)
        return json_response(e.to_dict(), e.status)
    response = json_response(result)
    response.headers["Cache-Control"] = "no-store"
    return response


@router.api_route("/oauth2/userinfo", methods=["GET", "POST"])
async def userinfo(
    request: Request,
    server: OAuth2Server = Depends(get_oauth2),
    catalog: ILSConnection = Depends(get_ils),
    db: AsyncSession = Depends(get_db),
):
    """Claims of the user an access token was issued for."""
    try:
        return json_response(await server.userinfo(db, request.headers.get("Authorization"), catalog))
    except OAuth2Error as e:
        return json_response(e.to_dict(), e.status)


@router.get("/oauth2/jwks")
async def jwks(server: OAuth2Server = Depends(get_oauth2)):
    if not server.configured:
        return json_response({"error": "not_found", "error_description": "OAuth2 keys are not configured"}, 404)
    return json_response(server.jwks())


@router.get("/.well-known/openid-configuration")
async def openid_configuration(
    request: Request,
    server: OAuth2Server = Depends(get_oauth2),
):
    return json_response(server.openid_configuration(str(request.base_url)))
