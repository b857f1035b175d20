"""presign/lambda_function.py

Lambda endpoint issuing short-lived S3 presigned URLs for document payloads.

Routes (via API Gateway proxy):
    POST    /api/presign
    OPTIONS /api/presign

Request body:
    {"mode": "put", "fileName": "...", "contentType": "...", "fileSize": 123, "docId"?: "..."}
    {"mode": "get", "docId": "..."}

Upload admission (mode=put) happens here, before any URL is signed: the
content type must be on the allow-list and the size within
MAX_FILE_SIZE_BYTES. Downloads (mode=get) require existing metadata owned by
the caller.

Response:
    200 {presignedUrl, docId, expiresIn[, fileName]}

Environment variables:
    S3_BUCKET                default: librecloud-documents
    PRESIGN_EXPIRES_SECONDS  default: 60
    MAX_FILE_SIZE_BYTES      default: 52428800
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from librecloud_shared.auth import _authenticate
from librecloud_shared.context import HandlerContext, build_default_context
from librecloud_shared.http_utils import (
    _cors_headers,
    _error,
    _json_body,
    _path_method,
    _preflight,
    _request_meta,
    _response,
)
from librecloud_shared.rate_limiting import get_client_ip
from librecloud_shared.storage import GET, OPERATIONS, PUT
from librecloud_shared.validation import (
    is_allowed_file_type,
    is_positive_number,
    is_valid_identifier,
    with_extension,
)

COMPONENT = "presign-api"
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
    ctx.logger.info("presign request initiated request_id=%s ip=%s", meta["request_id"], meta["ip"])

    identity, auth_err = _authenticate(event, ctx.credentials, headers=cors)
    if auth_err:
        ctx.logger.warning("invalid token in presign request request_id=%s", meta["request_id"])
        return auth_err

    try:
        body = _json_body(event)
    except ValueError:
        return _error(400, "Invalid JSON body.", cors)

    mode = body.get("mode")
    file_name = body.get("fileName")
    content_type = body.get("contentType")
    file_size = body.get("fileSize")
    doc_id = body.get("docId")

    if mode not in OPERATIONS:
        ctx.logger.warning("invalid mode parameter request_id=%s mode=%r", meta["request_id"], mode)
        return _error(400, 'Mode parameter must be either "put" or "get"', cors)

    try:
        if mode == PUT:
            if not isinstance(file_name, str) or not file_name.strip() or not content_type:
                return _error(400, "fileName and contentType are required for PUT operations", cors)
            if not is_allowed_file_type(content_type):
                ctx.logger.warning(
                    "disallowed file type request_id=%s content_type=%s", meta["request_id"], content_type
                )
                return _error(
                    400,
                    "File type not allowed. Please use supported document or audio formats.",
                    cors,
                )
            if file_size is not None:
                if not is_positive_number(file_size):
                    return _error(400, "fileSize must be a positive number", cors)
                max_size = ctx.settings.max_file_size_bytes
                if file_size > max_size:
                    ctx.logger.warning(
                        "file size too large request_id=%s file_size=%s max=%s",
                        meta["request_id"], file_size, max_size,
                    )
                    return _error(
                        400,
                        f"File size too large. Maximum allowed size is {max_size // (1024 * 1024)}MB",
                        cors,
                    )
            if doc_id is not None and not is_valid_identifier(doc_id):
                return _error(400, "docId must be a valid UUID", cors)

            final_doc_id = doc_id or str(uuid.uuid4())
            final_file_name = with_extension(file_name.strip(), content_type)
            final_content_type = content_type
        else:
            if not doc_id:
                return _error(400, "docId is required for GET operations", cors)
            if not is_valid_identifier(doc_id):
                return _error(400, "docId must be a valid UUID", cors)
            document = ctx.documents.get(identity.user_id, doc_id)
            if document is None:
                ctx.logger.warning(
                    "document not found for download request_id=%s doc_id=%s", meta["request_id"], doc_id
                )
                return _error(404, "Document not found", cors)
            final_doc_id = doc_id
            final_file_name = document.file_name
            final_content_type = document.content_type

        expires_in = ctx.settings.presign_expires_seconds
        presigned_url = ctx.storage.generate_presigned_url(
            identity.user_id,
            final_doc_id,
            mode,
            expires_in,
            file_name=final_file_name,
            content_type=final_content_type,
        )
    except Exception:
        ctx.logger.exception("error generating presigned URL request_id=%s", meta["request_id"])
        return _error(500, "Internal server error", cors)

    ctx.logger.info(
        "presigned URL generated request_id=%s user_id=%s doc_id=%s mode=%s",
        meta["request_id"], identity.user_id, final_doc_id, mode,
    )
    payload: Dict[str, Any] = {
        "presignedUrl": presigned_url,
        "docId": final_doc_id,
        "expiresIn": expires_in,
    }
    if mode == PUT:
        payload["fileName"] = final_file_name
    return _response(200, payload, cors)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    return handle(event, _get_context())
