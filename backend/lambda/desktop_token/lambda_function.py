"""desktop_token/lambda_function.py

Lambda endpoint polled by the desktop client until its pairing nonce is ready.

Routes (via API Gateway proxy):
    GET     /api/desktop-token?nonce=<nonce>
    OPTIONS /api/desktop-token

Responses:
    200  {token, expiresAt, user}    nonce was ready; token minted once, nonce consumed
    202  {status: "pending"}         keep polling
    400  bad nonce format, missing nonce, or nonce already consumed
    404  unknown nonce               restart pairing
    410  nonce expired               restart pairing
    429  polling too fast (DESKTOP_TOKEN_RATE_LIMIT, default 60/minute per IP)

Environment variables:
    DESKTOP_LOGIN_TABLE        default: librecloud-desktop-login
    DESKTOP_TOKEN_FORMAT       structured (default) | jwt
    DESKTOP_TOKEN_SECRET       HS256 secret when DESKTOP_TOKEN_FORMAT=jwt
    DESKTOP_TOKEN_TTL_SECONDS  default: 3600
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from librecloud_shared.context import HandlerContext, build_default_context
from librecloud_shared.http_utils import (
    _cors_headers,
    _error,
    _path_method,
    _preflight,
    _query_params,
    _request_meta,
    _response,
)
from librecloud_shared.pairing import (
    POLL_EXPIRED,
    POLL_INVALID_NONCE,
    POLL_NOT_FOUND,
    POLL_PENDING,
    POLL_READY,
)
from librecloud_shared.rate_limiting import get_client_ip, rate_limit_headers

COMPONENT = "desktop-token"
ALLOWED_METHODS = ("GET", "OPTIONS")

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
    if method != "GET":
        return _error(405, f"Method {method} not allowed.", cors)

    client_ip = get_client_ip(event.get("headers"))
    meta = _request_meta(event, client_ip)

    try:
        limit = ctx.desktop_token_limit
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

        nonce = (_query_params(event).get("nonce") or "").strip()
        if not nonce:
            return _error(400, "Nonce is required", headers)

        result = ctx.pairing.poll(nonce)
        ctx.logger.info(
            "desktop token poll request_id=%s nonce=%s outcome=%s",
            meta["request_id"], nonce, result.outcome,
        )

        if result.outcome == POLL_INVALID_NONCE:
            return _error(400, "Invalid nonce format", headers)
        if result.outcome == POLL_NOT_FOUND:
            return _error(404, "Invalid or expired nonce", headers)
        if result.outcome == POLL_EXPIRED:
            return _error(410, "Nonce has expired", headers)
        if result.outcome == POLL_PENDING:
            return _response(
                202,
                {"status": "pending", "message": "Authentication still pending"},
                headers,
            )
        if result.outcome == POLL_READY:
            return _response(
                200,
                {"token": result.token, "expiresAt": result.expires_at, "user": result.user},
                {**headers, "Cache-Control": "no-store"},
            )
        return _error(400, "Invalid nonce status", headers)
    except Exception:
        ctx.logger.exception("desktop token poll failed request_id=%s", meta["request_id"])
        return _error(500, "Internal server error", cors)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    return handle(event, _get_context())
