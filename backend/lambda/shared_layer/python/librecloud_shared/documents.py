"""librecloud_shared.documents — Per-user document metadata in DynamoDB.

Table layout: hash key `userId`, range key `docId`. A caller can only ever
address its own partition, so "owned by someone else" and "does not exist"
are the same outcome: the ownership condition fails and
`DocumentNotFoundError` is raised.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import ClientError

from .aws_clients import _get_ddb
from .serialization import _deserialize, _now_z, _serialize, _serialize_item

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("fileName", "fileSize", "contentType")


class DocumentNotFoundError(LookupError):
    """The (userId, docId) key does not exist for this caller."""


@dataclass
class DocumentRecord:
    user_id: str
    doc_id: str
    file_name: str
    file_size: int
    uploaded_at: str
    last_modified: str
    content_type: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "userId": self.user_id,
            "docId": self.doc_id,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "uploadedAt": self.uploaded_at,
            "lastModified": self.last_modified,
        }
        if self.content_type:
            item["contentType"] = self.content_type
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "DocumentRecord":
        return cls(
            user_id=str(item["userId"]),
            doc_id=str(item["docId"]),
            file_name=str(item.get("fileName") or ""),
            file_size=item.get("fileSize") or 0,
            uploaded_at=str(item.get("uploadedAt") or ""),
            last_modified=str(item.get("lastModified") or ""),
            content_type=item.get("contentType"),
        )


class DocumentStore:
    def __init__(
        self,
        table_name: str,
        ddb_factory: Callable[[], Any] = _get_ddb,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.table_name = table_name
        self._ddb_factory = ddb_factory
        self.clock = clock

    def _key(self, user_id: str, doc_id: str) -> Dict[str, Any]:
        return {"userId": _serialize(user_id), "docId": _serialize(doc_id)}

    def new_record(
        self,
        user_id: str,
        doc_id: str,
        file_name: str,
        file_size: int,
        content_type: Optional[str] = None,
    ) -> DocumentRecord:
        now = _now_z(self.clock())
        return DocumentRecord(
            user_id=user_id,
            doc_id=doc_id,
            file_name=file_name,
            file_size=file_size,
            uploaded_at=now,
            last_modified=now,
            content_type=content_type,
        )

    def create(self, record: DocumentRecord) -> None:
        self._ddb_factory().put_item(
            TableName=self.table_name,
            Item=_serialize_item(record.to_item()),
        )

    def get(self, user_id: str, doc_id: str) -> Optional[DocumentRecord]:
        resp = self._ddb_factory().get_item(
            TableName=self.table_name,
            Key=self._key(user_id, doc_id),
        )
        raw = resp.get("Item")
        if not raw:
            return None
        return DocumentRecord.from_item(_deserialize(raw))

    def list_for_user(self, user_id: str) -> List[DocumentRecord]:
        """All documents owned by ``user_id``, newest upload first."""
        ddb = self._ddb_factory()
        params: Dict[str, Any] = {
            "TableName": self.table_name,
            "KeyConditionExpression": "userId = :uid",
            "ExpressionAttributeValues": {":uid": _serialize(user_id)},
        }
        records: List[DocumentRecord] = []
        while True:
            resp = ddb.query(**params)
            records.extend(DocumentRecord.from_item(_deserialize(item)) for item in resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            params["ExclusiveStartKey"] = last_key
        # docId is a random UUID, so the range key says nothing about age
        records.sort(key=lambda r: r.uploaded_at, reverse=True)
        return records

    def update(self, user_id: str, doc_id: str, fields: Dict[str, Any]) -> DocumentRecord:
        """Apply a partial update. `lastModified` is refreshed even when ``fields`` is empty."""
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")

        updates = dict(fields)
        updates["lastModified"] = _now_z(self.clock())

        expr_parts: List[str] = []
        attr_names: Dict[str, str] = {"#owner": "userId"}
        attr_values: Dict[str, Any] = {}
        for name, value in updates.items():
            expr_parts.append(f"#{name} = :{name}")
            attr_names[f"#{name}"] = name
            attr_values[f":{name}"] = _serialize(value)

        try:
            resp = self._ddb_factory().update_item(
                TableName=self.table_name,
                Key=self._key(user_id, doc_id),
                UpdateExpression="SET " + ", ".join(expr_parts),
                ConditionExpression="attribute_exists(#owner)",
                ExpressionAttributeNames=attr_names,
                ExpressionAttributeValues=attr_values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                raise DocumentNotFoundError(doc_id) from exc
            raise
        return DocumentRecord.from_item(_deserialize(resp.get("Attributes") or {}))

    def delete(self, user_id: str, doc_id: str) -> None:
        try:
            self._ddb_factory().delete_item(
                TableName=self.table_name,
                Key=self._key(user_id, doc_id),
                ConditionExpression="attribute_exists(userId)",
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                raise DocumentNotFoundError(doc_id) from exc
            raise
