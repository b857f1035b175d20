"""librecloud_shared.serialization — DynamoDB serialization/deserialization.

Provides TypeSerializer/TypeDeserializer wrappers, timestamp helpers and the
structured observability log line used across LibreCloud Lambdas.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import time
from decimal import Decimal
from typing import Any, Dict, Optional

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

logger = logging.getLogger(__name__)

_SER = TypeSerializer()
_DESER = TypeDeserializer()


def _to_ddb_numbers(value: Any) -> Any:
    # TypeSerializer rejects float at any depth
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_ddb_numbers(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_ddb_numbers(v) for v in value]
    return value


def _serialize(value: Any) -> Any:
    """Serialize a Python value for DynamoDB."""
    return _SER.serialize(_to_ddb_numbers(value))


def _serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize a flat dict, dropping None values (DynamoDB rejects NULL keys)."""
    return {k: _serialize(v) for k, v in item.items() if v is not None}


def _normalize(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == int(value) else float(value)
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    return value


def _deserialize(item: Dict[str, Any]) -> Dict[str, Any]:
    """Deserialize a DynamoDB item to a plain Python dict."""
    return {k: _normalize(_DESER.deserialize(v)) for k, v in item.items()}


def _now_z(now: Optional[float] = None) -> str:
    """UTC timestamp in ISO 8601 format with millisecond precision and Z suffix."""
    moment = dt.datetime.fromtimestamp(time.time() if now is None else now, dt.timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def _epoch_ms(now: float) -> int:
    return int(now * 1000)


def _emit_structured_observability(
    *,
    component: str,
    event: str,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    payload: Dict[str, Any] = {
        "timestamp": _now_z(),
        "component": component,
        "event": event,
        "request_id": str(request_id or ""),
        "user_id": str(user_id or ""),
        "error_code": str(error_code or ""),
    }
    if extra:
        payload.update(extra)
    logger.info("[OBSERVABILITY] %s", json.dumps(payload, sort_keys=True, default=str))
