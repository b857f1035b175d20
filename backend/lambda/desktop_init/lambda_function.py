"""desktop_init/lambda_function.py

Lambda endpoint that starts a desktop pairing attempt.

Routes (via API Gateway proxy):
    POST    /api/desktop-init     — issue a nonce and browser login URL
    OPTIONS /api/desktop-init     — CORS preflight

Auth:
    None. Rate-limited per client IP (DESKTOP_INIT_RATE_LIMIT, default
    10 requests per 15 minutes).

Response:
    200 {nonce, loginUrl, expiresAt, message}; the desktop client opens
    loginUrl in a browser and polls /api/desktop-token?nonce=<nonce>.

Environment variables:
    DESKTOP_LOGIN_TABLE    default: librecloud-desktop-login
    APP_BASE_URL           default: http://localhost:3009
    PAIRING_TTL_SECONDS    default: 300
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from librecloud_shared.context import HandlerContext, build_default_context
from librecloud_shared.http_utils import (
    _cors_headers,
    _error,
    _header,
    _path_method,
    _preflight,
    _request_meta,
    _response,
)
from librecloud_shared.rate_limiting import get_client_ip, rate_limit_headers

COMPONENT = "desktop-init"
ALLOWED_METHODS = ("POST", "OPTIONS")

_context: Optional[HandlerContext] = None


def _get_context() -> HandlerContext:
    global _context
    if _context is None:
        _context = build_default_context(COMPONENT)
    return _context


def handle(event: Dict[str, Any], ctx: HandlerContext) -> Dict[str, Any]:
    cors = _cors_headers(ALLOWED_METHODS, ctx.settings.cors_origin)
    method, _path = _path_method(event)
    if method == "OPTIONS":
        return _preflight(cors)
    if method != "POST":
        return _error(405, f"Method {method} not allowed.", cors)

    client_ip = get_client_ip(event.get("headers"))
    meta = _request_meta(event, client_ip)
    ctx.logger.info(
        "desktop authentication initialization requested request_id=%s ip=%s user_agent=%s",
        meta["request_id"], client_ip, meta["user_agent"],
    )

    try:
        limit = ctx.desktop_init_limit
        rate = ctx.rate_limiter.check(f"{COMPONENT}:{client_ip}", limit)
        headers = {**cors, **rate_limit_headers(limit, rate)}
        if not rate.allowed:
            ctx.logger.warning(
                "rate limit exceeded request_id=%s ip=%s retry_after=%s",
                meta["request_id"], client_ip, rate.retry_after,
            )
            return _error(
                429,
                "Rate limit exceeded. Please try again later.",
                headers,
                retryAfter=rate.retry_after,
            )

        content_type = _header(event, "content-type")
        if content_type and "application/json" not in content_type.lower():
            ctx.logger.warning(
                "invalid content type request_id=%s content_type=%s",
                meta["request_id"], content_type,
            )
            return _error(400, "Content-Type must be application/json", headers)

        initiation = ctx.pairing.initiate(client_ip)
        ctx.logger.info(
            "desktop authentication initialized request_id=%s nonce=%s",
            meta["request_id"], initiation.nonce,
        )
        return _response(
            200,
            {
                "nonce": initiation.nonce,
                "loginUrl": initiation.login_url,
                "expiresAt": initiation.expires_at,
                "message": "Open the loginUrl in your browser to authenticate",
            },
            headers,
        )
    except Exception:
        ctx.logger.exception("failed to initialize desktop authentication request_id=%s", meta["request_id"])
        return _error(500, "Internal server error. Please try again later.", cors)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    return handle(event, _get_context())
