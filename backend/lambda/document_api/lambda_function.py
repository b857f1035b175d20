"""document_api/lambda_function.py

Lambda API for per-user document metadata on LibreCloud.
Document payloads live in S3 at <userId>/<docId> (uploaded through
/api/presign); this API tracks their metadata in DynamoDB.

Routes (via API Gateway proxy):
    GET     /api/documents                 — list the caller's documents, newest first
    POST    /api/documents                 — register an uploaded document
    DELETE  /api/documents?docId={id}      — delete payload and metadata
    GET     /api/documents/{documentId}    — fetch one document's metadata
    PATCH   /api/documents/{documentId}    — partial metadata update (session only)
    OPTIONS /api/documents[/*]             — CORS preflight

Auth:
    `Authorization: Bearer <token>` carrying either a desktop pairing token or
    an identity-provider session token. PATCH accepts session tokens only.

Environment variables:
    DOCUMENTS_TABLE        default: librecloud-documents
    S3_BUCKET              default: librecloud-documents
"""

from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, Optional, Tuple

from librecloud_shared.auth import Identity, _authenticate
from librecloud_shared.context import HandlerContext, build_default_context
from librecloud_shared.documents import DocumentNotFoundError
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
from librecloud_shared.serialization import _emit_structured_observability
from librecloud_shared.validation import (
    MAX_FILE_NAME_LENGTH,
    is_positive_number,
    is_valid_identifier,
)

COMPONENT = "documents-api"
ALLOWED_METHODS = ("GET", "POST", "PATCH", "DELETE", "OPTIONS")

_DOCUMENT_PATH = re.compile(r"/documents/(?P<documentId>[A-Za-z0-9_-]+)/?$")

_context: Optional[HandlerContext] = None


def _get_context() -> HandlerContext:
    global _context
    if _context is None:
        _context = build_default_context(COMPONENT)
    return _context


def _parse_request(event: Dict[str, Any]) -> Tuple[str, Optional[str]]:
    """Parse method and document_id (path parameter or path tail) from event."""
    method, raw_path = _path_method(event)
    path_params = event.get("pathParameters") or {}
    document_id = path_params.get("documentId") or path_params.get("id")
    if not document_id:
        match = _DOCUMENT_PATH.search(raw_path)
        if match:
            document_id = match.group("documentId")
    return method, document_id


def _validate_file_name(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return "fileName must be a non-empty string"
    if len(value) > MAX_FILE_NAME_LENGTH:
        return f"fileName exceeds {MAX_FILE_NAME_LENGTH} characters"
    return None


# ---------------------------------------------------------------------------
# GET — list / single
# ---------------------------------------------------------------------------


def _handle_list(ctx: HandlerContext, identity: Identity, cors: Dict[str, str], meta: Dict[str, str]) -> Dict:
    documents = ctx.documents.list_for_user(identity.user_id)
    ctx.logger.info(
        "documents retrieved request_id=%s user_id=%s count=%d",
        meta["request_id"], identity.user_id, len(documents),
    )
    return _response(
        200,
        {"documents": [doc.to_item() for doc in documents], "total": len(documents)},
        cors,
    )


def _handle_get_single(ctx: HandlerContext, identity: Identity, document_id: str, cors: Dict[str, str]) -> Dict:
    document = ctx.documents.get(identity.user_id, document_id)
    if document is None:
        return _error(404, "Document not found", cors)
    return _response(200, {"success": True, "document": document.to_item()}, cors)


# ---------------------------------------------------------------------------
# POST — register
# ---------------------------------------------------------------------------


def _handle_register(
    ctx: HandlerContext,
    event: Dict[str, Any],
    identity: Identity,
    cors: Dict[str, str],
    meta: Dict[str, str],
) -> Dict:
    try:
        body = _json_body(event)
    except ValueError:
        return _error(400, "Invalid JSON body.", cors)

    doc_id = body.get("docId")
    file_name = body.get("fileName")
    file_size = body.get("fileSize")
    content_type = body.get("contentType")

    if not doc_id or not file_name or file_size in (None, ""):
        ctx.logger.warning(
            "missing required fields for document registration request_id=%s fields=%s",
            meta["request_id"], sorted(body.keys()),
        )
        return _error(400, "docId, fileName, and fileSize are required", cors)
    if not is_positive_number(file_size):
        return _error(400, "fileSize must be a positive number", cors)
    if not is_valid_identifier(doc_id):
        return _error(400, "docId must be a valid UUID", cors)
    name_err = _validate_file_name(file_name)
    if name_err:
        return _error(400, name_err, cors)
    if content_type is not None and not isinstance(content_type, str):
        return _error(400, "contentType must be a string", cors)

    record = ctx.documents.new_record(
        identity.user_id,
        doc_id,
        file_name.strip(),
        file_size,
        content_type or None,
    )
    ctx.documents.create(record)

    _emit_structured_observability(
        component=COMPONENT,
        event="document_registered",
        request_id=meta["request_id"],
        user_id=identity.user_id,
        extra={"doc_id": doc_id, "file_size": file_size},
    )
    return _response(201, {"success": True, "document": record.to_item()}, cors)


# ---------------------------------------------------------------------------
# PATCH — partial metadata update
# ---------------------------------------------------------------------------


def _handle_patch(
    ctx: HandlerContext,
    event: Dict[str, Any],
    identity: Identity,
    document_id: str,
    cors: Dict[str, str],
    meta: Dict[str, str],
) -> Dict:
    if not is_valid_identifier(document_id):
        return _error(400, "Document ID must be a valid UUID", cors)
    try:
        body = _json_body(event)
    except ValueError:
        return _error(400, "Invalid JSON body.", cors)

    fields: Dict[str, Any] = {}
    if "fileName" in body:
        name_err = _validate_file_name(body["fileName"])
        if name_err:
            return _error(400, name_err, cors)
        fields["fileName"] = body["fileName"].strip()
    if "fileSize" in body:
        if not is_positive_number(body["fileSize"]):
            return _error(400, "fileSize must be a positive number", cors)
        fields["fileSize"] = body["fileSize"]
    if "contentType" in body:
        if not isinstance(body["contentType"], str) or not body["contentType"].strip():
            return _error(400, "contentType must be a non-empty string", cors)
        fields["contentType"] = body["contentType"].strip()

    try:
        document = ctx.documents.update(identity.user_id, document_id, fields)
    except DocumentNotFoundError:
        return _error(404, "Document not found or access denied", cors)

    _emit_structured_observability(
        component=COMPONENT,
        event="document_updated",
        request_id=meta["request_id"],
        user_id=identity.user_id,
        extra={"doc_id": document_id, "fields": sorted(fields)},
    )
    return _response(200, {"success": True, "document": document.to_item()}, cors)


# ---------------------------------------------------------------------------
# DELETE — best-effort dual delete (S3 payload + metadata), no rollback
# ---------------------------------------------------------------------------


def _delete_both(ctx: HandlerContext, user_id: str, doc_id: str) -> Dict[str, Exception]:
    failures: Dict[str, Exception] = {}
    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = {
            pool.submit(ctx.storage.delete_object, user_id, doc_id): "storage",
            pool.submit(ctx.documents.delete, user_id, doc_id): "metadata",
        }
        for future in as_completed(futures):
            try:
                future.result()
            except Exception as exc:
                failures[futures[future]] = exc
    return failures


def _handle_delete(
    ctx: HandlerContext,
    event: Dict[str, Any],
    identity: Identity,
    cors: Dict[str, str],
    meta: Dict[str, str],
) -> Dict:
    doc_id = (_query_params(event).get("docId") or "").strip()
    if not doc_id:
        return _error(400, "docId parameter is required", cors)
    if not is_valid_identifier(doc_id):
        return _error(400, "docId must be a valid UUID", cors)

    failures = _delete_both(ctx, identity.user_id, doc_id)
    for leg, exc in failures.items():
        ctx.logger.error(
            "document delete leg failed request_id=%s user_id=%s doc_id=%s leg=%s error=%s",
            meta["request_id"], identity.user_id, doc_id, leg, exc,
        )

    if isinstance(failures.get("metadata"), DocumentNotFoundError):
        return _error(404, "Document not found", cors)
    if len(failures) == 1:
        _emit_structured_observability(
            component=COMPONENT,
            event="document_delete_partial",
            request_id=meta["request_id"],
            user_id=identity.user_id,
            error_code="PARTIAL_DELETE",
            extra={"doc_id": doc_id, "failed": sorted(failures)},
        )
        return _error(
            500,
            "Document deletion partially failed.",
            cors,
            code="PARTIAL_DELETE",
            failed=sorted(failures),
        )
    if failures:
        return _error(500, "Internal server error", cors)

    _emit_structured_observability(
        component=COMPONENT,
        event="document_deleted",
        request_id=meta["request_id"],
        user_id=identity.user_id,
        extra={"doc_id": doc_id},
    )
    return _response(200, {"success": True, "message": "Document deleted successfully"}, cors)


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------


def handle(event: Dict[str, Any], ctx: HandlerContext) -> Dict[str, Any]:
    cors = _cors_headers(ALLOWED_METHODS, ctx.settings.cors_origin)
    method, document_id = _parse_request(event)

    if method == "OPTIONS":
        return _preflight(cors)
    if method not in ALLOWED_METHODS:
        return _error(405, f"Method {method} not allowed.", cors)

    meta = _request_meta(event, get_client_ip(event.get("headers")))
    ctx.logger.info(
        "documents request request_id=%s method=%s document_id=%s ip=%s",
        meta["request_id"], method, document_id, meta["ip"],
    )

    identity, auth_err = _authenticate(
        event, ctx.credentials, headers=cors, session_only=(method == "PATCH")
    )
    if auth_err:
        ctx.logger.warning("unauthenticated documents request request_id=%s", meta["request_id"])
        return auth_err

    try:
        if method == "GET":
            if document_id:
                return _handle_get_single(ctx, identity, document_id, cors)
            return _handle_list(ctx, identity, cors, meta)
        if method == "POST" and not document_id:
            return _handle_register(ctx, event, identity, cors, meta)
        if method == "PATCH" and document_id:
            return _handle_patch(ctx, event, identity, document_id, cors, meta)
        if method == "DELETE" and not document_id:
            return _handle_delete(ctx, event, identity, cors, meta)
        if method == "PATCH":
            return _error(400, "Document ID is required", cors)
        return _error(405, f"Method {method} not allowed on this path.", cors)
    except Exception:
        ctx.logger.exception(
            "documents request failed request_id=%s method=%s user_id=%s",
            meta["request_id"], method, identity.user_id,
        )
        return _error(500, "Internal server error", cors)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    return handle(event, _get_context())
