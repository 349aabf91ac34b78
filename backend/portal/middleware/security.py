"""Security headers for every response."""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import Response

from portal.config import settings

# Endpoints meant to be called from other origins
PUBLIC_PREFIXES = ("/api/v1/search", "/api/v1/record", "/oauth2/", "/.well-known/")


def is_public_path(path: str) -> bool:
    return path == "/api" or path.startswith(PUBLIC_PREFIXES)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds browser security headers.

    The service only returns JSON (and JSONP), so the content security
    policy forbids everything. Public search and OAuth2 endpoints may be
    read cross-origin; everything else is same-origin only.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        path = request.url.path

        # Prevent clickjacking - page cannot be embedded in iframes
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if settings.ENVIRONMENT == "production":
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains; preload"

        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=(), payment=(), usb=()"
        response.headers["Cross-Origin-Resource-Policy"] = "cross-origin" if is_public_path(path) else "same-origin"
        response.headers["X-Permitted-Cross-Domain-Policies"] = "none"

        # Account data must not be cached
        if path.startswith("/api/v1/") and not is_public_path(path):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
            response.headers["Pragma"] = "no-cache"

        return response


class AccountCORSMiddleware(CORSMiddleware):
    """CORS for the configured origins; public endpoints send their own headers."""

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] == "http" and is_public_path(scope["path"]):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)
