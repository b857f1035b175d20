"""librecloud_shared.http_utils — HTTP response helpers with CORS.

Standard response envelope, error formatting and API Gateway event parsing
used by all LibreCloud API Lambda functions.
"""

from __future__ import annotations

import base64
import json
import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGIN = "*"

_ERROR_CODES = {
    400: "INVALID_INPUT",
    401: "UNAUTHENTICATED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    410: "EXPIRED",
    429: "RATE_LIMITED",
}


def _cors_headers(
    methods: Iterable[str] = ("GET", "POST", "OPTIONS"),
    origin: str = DEFAULT_CORS_ORIGIN,
) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": ", ".join(methods),
        "Access-Control-Allow-Headers": "Content-Type, Authorization, User-Agent",
        "Access-Control-Max-Age": "86400",
    }


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return int(obj) if obj % 1 == 0 else float(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _response(
    status_code: int,
    body: Any,
    headers: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Build a standard API Gateway response.

    Args:
        status_code: HTTP status code.
        body: JSON-serializable payload.
        headers: CORS and any extra headers (rate limit, etc.).
    """
    return {
        "statusCode": status_code,
        "headers": {
            "Content-Type": "application/json",
            **(headers or _cors_headers()),
        },
        "body": json.dumps(body, default=_json_default),
    }


def _error(
    status_code: int,
    message: str,
    headers: Optional[Mapping[str, str]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a standard error response.

    The legacy top-level ``error`` string is what clients display; the
    envelope carries a machine-readable code.
    """
    code = str(extra.pop("code", "") or "").strip().upper()
    if not code:
        code = _ERROR_CODES.get(status_code, "INTERNAL_ERROR")
    retryable = bool(extra.pop("retryable", status_code >= 500 or status_code == 429))
    payload: Dict[str, Any] = {
        "success": False,
        "error": message,
        "error_envelope": {
            "code": code,
            "message": message,
            "retryable": retryable,
            "details": dict(extra),
        },
    }
    payload.update(extra)
    return _response(status_code, payload, headers)


def _preflight(headers: Mapping[str, str]) -> Dict[str, Any]:
    return {"statusCode": 200, "headers": dict(headers), "body": ""}


def _json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """Parse the JSON object body of an API Gateway event (handles base64).

    An absent body parses as ``{}``. Raises ValueError for malformed JSON or a
    non-object payload.
    """
    raw = event.get("body")
    if raw in (None, ""):
        return {}
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        raise ValueError(f"Invalid JSON body: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("JSON body must be an object")
    return parsed


def _path_method(event: Dict[str, Any]) -> Tuple[str, str]:
    """Extract HTTP method and path from API Gateway v1/v2 events."""
    rc = event.get("requestContext") or {}
    http = rc.get("http") or {}
    method = (http.get("method") or event.get("httpMethod") or "GET").upper()
    path = event.get("rawPath") or http.get("path") or event.get("path") or "/"
    return method, path


def _header(event: Dict[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    headers = event.get("headers") or {}
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() == wanted:
            return value
    return None


def _query_params(event: Dict[str, Any]) -> Dict[str, str]:
    return dict(event.get("queryStringParameters") or {})


def _request_meta(event: Dict[str, Any], client_ip: str) -> Dict[str, str]:
    """Per-request logging metadata: a fresh request id, user agent and IP."""
    rc = event.get("requestContext") or {}
    return {
        "request_id": str(rc.get("requestId") or uuid.uuid4()),
        "user_agent": _header(event, "user-agent") or "",
        "ip": client_ip,
    }
