from __future__ import annotations

import logging
import os
import re
import secrets
from typing import Optional
from urllib.parse import urlencode

from fastapi import HTTPException, Request
from fastapi.responses import PlainTextResponse, RedirectResponse, Response

logger = logging.getLogger(__name__)

ADMIN_COOKIE_NAME = "admin_session"
ADMIN_COOKIE_VALUE = "authenticated"
ADMIN_COOKIE_MAX_AGE = 60 * 60 * 24 * 30
ADMIN_TOKEN_HEADER = "x-admin-token"
ADMIN_LOGIN_PATH = "/admin/login"

ALLOWED_BOTS = ("Googlebot", "AdsBot-Google", "Mediapartners-Google", "bingbot", "Applebot")
BLOCKED_AGENT_PATTERNS = (
    "AhrefsBot",
    "SemrushBot",
    "MJ12bot",
    "DotBot",
    "Scrapy",
    "curl/",
    "python-requests",
    "HttpClient",
    "Java/",
    "Go-http-client",
    "wget",
    "libwww-perl",
    "axios",
    "DataForSeoBot",
    "spider",
    "crawler",
)
GENERIC_BOT_PATTERN = re.compile(r"bot|crawler|spider|scrape|crawl", re.IGNORECASE)


def _env(name: str) -> str:
    return (os.getenv(name) or "").strip()


def _matches(candidate: Optional[str], expected: str) -> bool:
    if not candidate or not expected:
        return False
    return secrets.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def cookie_secure() -> bool:
    return _env("COOKIE_SECURE").lower() in {"1", "true", "yes", "on"}


def check_admin_credentials(username: Optional[str], password: Optional[str]) -> None:
    """Validate a login attempt, raising HTTPException with the right status on failure."""
    if not username or not password:
        raise HTTPException(status_code=400, detail="Username and password are required")
    admin_username = _env("ADMIN_USERNAME")
    admin_password = _env("ADMIN_PASSWORD")
    if not admin_username or not admin_password:
        logger.warning("ADMIN_USERNAME or ADMIN_PASSWORD not configured")
        raise HTTPException(status_code=500, detail="Admin authentication not configured")
    if not (_matches(username, admin_username) and _matches(password, admin_password)):
        raise HTTPException(status_code=401, detail="Invalid credentials")


def set_admin_cookie(response: Response) -> None:
    response.set_cookie(
        ADMIN_COOKIE_NAME,
        ADMIN_COOKIE_VALUE,
        max_age=ADMIN_COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        samesite="lax",
        secure=cookie_secure(),
    )


def clear_admin_cookie(response: Response) -> None:
    response.delete_cookie(ADMIN_COOKIE_NAME, path="/")


def has_admin_session(request: Request) -> bool:
    return request.cookies.get(ADMIN_COOKIE_NAME) == ADMIN_COOKIE_VALUE


def has_admin_token(request: Request) -> bool:
    token = _env("ADMIN_DASHBOARD_TOKEN")
    if not token:
        return False
    return _matches(request.headers.get(ADMIN_TOKEN_HEADER), token) or _matches(
        request.query_params.get("token"), token
    )


def is_admin_request(request: Request) -> bool:
    if has_admin_session(request) or has_admin_token(request):
        return True
    if not _env("ADMIN_DASHBOARD_TOKEN") and not (_env("ADMIN_USERNAME") and _env("ADMIN_PASSWORD")):
        # Nothing configured: local development stays open.
        logger.warning("No admin token or credentials configured; allowing admin access")
        return True
    return False


async def require_admin(request: Request) -> None:
    if not is_admin_request(request):
        raise HTTPException(status_code=401, detail="Unauthorized")


def is_cron_authorized(request: Request, dry_run: bool = False, allow_admin_token: bool = False) -> bool:
    if dry_run:
        return True
    secret = _env("CRON_SECRET")
    if not secret:
        return True
    if _matches(request.headers.get("authorization"), f"Bearer {secret}"):
        return True
    if _matches(request.query_params.get("secret"), secret):
        return True
    return allow_admin_token and has_admin_token(request)


def is_blocked_user_agent(user_agent: Optional[str]) -> bool:
    ua = user_agent or ""
    if any(token in ua for token in ALLOWED_BOTS):
        return False
    if GENERIC_BOT_PATTERN.search(ua):
        return True
    return any(token in ua for token in BLOCKED_AGENT_PATTERNS)


def admin_page_redirect(request: Request) -> Optional[Response]:
    """Redirect unauthenticated visitors of /admin pages to the login screen."""
    path = request.url.path
    if not path.startswith("/admin") or path == ADMIN_LOGIN_PATH:
        return None
    if has_admin_session(request):
        return None
    return RedirectResponse(f"{ADMIN_LOGIN_PATH}?{urlencode({'redirect': path})}", status_code=307)


async def request_gate(request: Request, call_next):
    if is_blocked_user_agent(request.headers.get("user-agent")):
        logger.info("Blocked user agent %r on %s", request.headers.get("user-agent"), request.url.path)
        return PlainTextResponse("Blocked", status_code=403)
    redirect = admin_page_redirect(request)
    if redirect is not None:
        return redirect
    return await call_next(request)
