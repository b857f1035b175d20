"""desktop_complete/lambda_function.py

Lambda endpoint called by the browser once the user has signed in on the
desktop login page. Marks the pairing nonce ready with the signed-in
identity so the polling desktop client can collect its token.

Routes (via API Gateway proxy):
    POST    /api/desktop-complete      body: {"nonce": "<nonce>"}
    OPTIONS /api/desktop-complete

Auth:
    Identity-provider session only (bearer header or `__session` cookie);
    desktop pairing tokens are not accepted here.

Responses:
    202  accepted. Unknown, expired, already-used or malformed nonces are
         logged and otherwise ignored; the desktop side times out on its own.
    400  nonce missing / body not JSON
    401  no valid session
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from librecloud_shared.auth import _authenticate
from librecloud_shared.context import HandlerContext, build_default_context
from librecloud_shared.http_utils import (
    _cors_headers,
    _error,
    _json_body,
    _path_method,
    _preflight,
    _query_params,
    _request_meta,
    _response,
)
from librecloud_shared.rate_limiting import get_client_ip

COMPONENT = "desktop-complete"
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

    meta = _request_meta(event, get_client_ip(event.get("headers")))
    identity, auth_err = _authenticate(event, ctx.credentials, headers=cors, session_only=True)
    if auth_err:
        ctx.logger.warning("desktop completion without session request_id=%s", meta["request_id"])
        return auth_err

    try:
        body = _json_body(event)
    except ValueError as exc:
        return _error(400, str(exc), cors)

    nonce = str(body.get("nonce") or _query_params(event).get("nonce") or "").strip()
    if not nonce:
        return _error(400, "Nonce is required", cors)

    try:
        marked = ctx.pairing.mark_ready(nonce, identity)
    except Exception:
        ctx.logger.exception(
            "failed to mark nonce ready request_id=%s nonce=%s", meta["request_id"], nonce
        )
        return _error(500, "Internal server error", cors)

    ctx.logger.info(
        "desktop completion request_id=%s nonce=%s user_id=%s marked=%s",
        meta["request_id"], nonce, identity.user_id, marked,
    )
    return _response(
        202,
        {
            "success": True,
            "nonce": nonce,
            "message": "You can now return to the desktop application.",
        },
        cors,
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    return handle(event, _get_context())
