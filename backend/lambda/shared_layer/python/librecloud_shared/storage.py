"""librecloud_shared.storage — S3 gateway for document payloads.

Objects live at `<userId>/<docId>`. Uploads and downloads go straight
between the client and S3 through short-lived presigned URLs, each scoped to a
single operation. Type and size admission is the caller's job.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

from .aws_clients import _get_s3
from .serialization import _now_z

logger = logging.getLogger(__name__)

PUT = "put"
GET = "get"
OPERATIONS = (PUT, GET)


def object_key(user_id: str, doc_id: str) -> str:
    return f"{user_id}/{doc_id}"


def _content_disposition(file_name: str) -> str:
    ascii_name = file_name.encode("ascii", "ignore").decode("ascii").replace('"', "") or "download"
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(file_name)}"


class ObjectStorageGateway:
    def __init__(
        self,
        bucket: str,
        s3_factory: Callable[[], Any] = _get_s3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.bucket = bucket
        self._s3_factory = s3_factory
        self.clock = clock

    def generate_presigned_url(
        self,
        user_id: str,
        doc_id: str,
        operation: str,
        expires_in: int,
        file_name: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> str:
        if operation not in OPERATIONS:
            raise ValueError(f"Unsupported presign operation: {operation!r}")

        key = object_key(user_id, doc_id)
        params: Dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if operation == PUT:
            if content_type:
                params["ContentType"] = content_type
            params["Metadata"] = {
                "userId": user_id,
                "docId": doc_id,
                "fileName": file_name or doc_id,
                "uploadedAt": _now_z(self.clock()),
            }
            client_method = "put_object"
        else:
            if file_name:
                params["ResponseContentDisposition"] = _content_disposition(file_name)
            if content_type:
                params["ResponseContentType"] = content_type
            client_method = "get_object"

        return self._s3_factory().generate_presigned_url(
            client_method,
            Params=params,
            ExpiresIn=int(expires_in),
        )

    def delete_object(self, user_id: str, doc_id: str) -> None:
        self._s3_factory().delete_object(Bucket=self.bucket, Key=object_key(user_id, doc_id))
