"""librecloud_shared.pairing — Desktop pairing state machine.

A desktop client initiates pairing and receives a nonce plus a browser login
URL. Once the user signs in, the browser flow marks the nonce ready with an
identity snapshot; the desktop client polls until it sees ready, at which
point a token is minted exactly once and the nonce is consumed.

    pending --mark_ready--> ready --poll--> consumed

`expired` is never stored: every reader compares `expiresAt` with the clock.
Forward-only transitions and at-most-once consumption are enforced with
DynamoDB conditional writes, so two concurrent polls of a ready nonce cannot
both mint a token.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from botocore.exceptions import ClientError

from .auth import Identity
from .aws_clients import _get_ddb
from .config import Settings
from .serialization import (
    _deserialize,
    _emit_structured_observability,
    _epoch_ms,
    _serialize,
    _serialize_item,
)
from .tokens import mint_desktop_token
from .validation import is_valid_identifier

logger = logging.getLogger(__name__)

PENDING = "pending"
READY = "ready"
CONSUMED = "consumed"

# poll outcomes
POLL_PENDING = "pending"
POLL_READY = "ready"
POLL_EXPIRED = "expired"
POLL_NOT_FOUND = "not_found"
POLL_INVALID_STATUS = "invalid_status"
POLL_INVALID_NONCE = "invalid_nonce"

# keep records around for a day past expiry before the table TTL reaps them
_TTL_GRACE_SECONDS = 24 * 3600


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


@dataclass
class PairingRecord:
    nonce: str
    status: str
    expires_at: int
    created_at: int
    client_ip: Optional[str] = None
    ready_at: Optional[int] = None
    consumed_at: Optional[int] = None
    user_id: Optional[str] = None
    user_profile: Dict[str, str] = field(default_factory=dict)

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expires_at

    def to_item(self) -> Dict[str, Any]:
        return {
            "nonce": self.nonce,
            "status": self.status,
            "expiresAt": self.expires_at,
            "createdAt": self.created_at,
            "clientIP": self.client_ip,
            "readyAt": self.ready_at,
            "consumedAt": self.consumed_at,
            "userId": self.user_id,
            "data": self.user_profile or None,
            "ttl": self.expires_at // 1000 + _TTL_GRACE_SECONDS,
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "PairingRecord":
        return cls(
            nonce=str(item["nonce"]),
            status=str(item.get("status") or ""),
            expires_at=int(item.get("expiresAt") or 0),
            created_at=int(item.get("createdAt") or 0),
            client_ip=item.get("clientIP"),
            ready_at=item.get("readyAt"),
            consumed_at=item.get("consumedAt"),
            user_id=item.get("userId"),
            user_profile=dict(item.get("data") or {}),
        )


class PairingStore:
    """DynamoDB-backed pairing records, one item per nonce."""

    def __init__(self, table_name: str, ddb_factory: Callable[[], Any] = _get_ddb) -> None:
        self.table_name = table_name
        self._ddb_factory = ddb_factory

    def _key(self, nonce: str) -> Dict[str, Any]:
        return {"nonce": _serialize(nonce)}

    def create(self, record: PairingRecord) -> None:
        self._ddb_factory().put_item(
            TableName=self.table_name,
            Item=_serialize_item(record.to_item()),
            ConditionExpression="attribute_not_exists(nonce)",
        )

    def get(self, nonce: str) -> Optional[PairingRecord]:
        resp = self._ddb_factory().get_item(
            TableName=self.table_name,
            Key=self._key(nonce),
            ConsistentRead=True,
        )
        raw = resp.get("Item")
        if not raw:
            return None
        return PairingRecord.from_item(_deserialize(raw))

    def mark_ready(self, nonce: str, user_id: str, profile: Dict[str, str], now_ms: int) -> bool:
        """pending -> ready. Returns False when the record is missing, expired or not pending."""
        try:
            self._ddb_factory().update_item(
                TableName=self.table_name,
                Key=self._key(nonce),
                UpdateExpression="SET #status = :ready, userId = :uid, #data = :data, readyAt = :now",
                ConditionExpression=(
                    "attribute_exists(nonce) AND #status = :pending AND expiresAt >= :now"
                ),
                ExpressionAttributeNames={"#status": "status", "#data": "data"},
                ExpressionAttributeValues={
                    ":ready": _serialize(READY),
                    ":pending": _serialize(PENDING),
                    ":uid": _serialize(user_id),
                    ":data": _serialize(profile),
                    ":now": _serialize(now_ms),
                },
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return False
            raise
        return True

    def consume(self, nonce: str, now_ms: int) -> Optional[PairingRecord]:
        """ready -> consumed. Returns the consumed record, or None if another caller won."""
        try:
            resp = self._ddb_factory().update_item(
                TableName=self.table_name,
                Key=self._key(nonce),
                UpdateExpression="SET #status = :consumed, consumedAt = :now",
                ConditionExpression="#status = :ready AND expiresAt >= :now",
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues={
                    ":consumed": _serialize(CONSUMED),
                    ":ready": _serialize(READY),
                    ":now": _serialize(now_ms),
                },
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return None
            raise
        return PairingRecord.from_item(_deserialize(resp.get("Attributes") or {"nonce": {"S": nonce}}))


@dataclass(frozen=True)
class PairingInitiation:
    nonce: str
    login_url: str
    expires_at: int


@dataclass(frozen=True)
class PollResult:
    outcome: str
    token: Optional[str] = None
    expires_at: Optional[int] = None
    user: Optional[Dict[str, str]] = None


class PairingService:
    def __init__(
        self,
        store: PairingStore,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.settings = settings
        self.clock = clock

    def _now_ms(self) -> int:
        return _epoch_ms(self.clock())

    def initiate(self, client_ip: Optional[str] = None) -> PairingInitiation:
        now_ms = self._now_ms()
        nonce = str(uuid.uuid4())
        record = PairingRecord(
            nonce=nonce,
            status=PENDING,
            expires_at=now_ms + self.settings.pairing_ttl_seconds * 1000,
            created_at=now_ms,
            client_ip=client_ip,
        )
        self.store.create(record)
        _emit_structured_observability(
            component="pairing",
            event="initiated",
            extra={"nonce": nonce, "expires_at": record.expires_at},
        )
        return PairingInitiation(
            nonce=nonce,
            login_url=f"{self.settings.app_base_url}/desktop-login?nonce={nonce}",
            expires_at=record.expires_at,
        )

    def mark_ready(self, nonce: str, identity: Identity) -> bool:
        """Attach the signed-in identity to a pending nonce.

        Invalid, unknown, expired or already-used nonces are logged and
        ignored; the desktop side simply times out.
        """
        if not is_valid_identifier(nonce):
            logger.warning("mark_ready ignored: malformed nonce=%r", nonce)
            return False
        marked = self.store.mark_ready(nonce, identity.user_id, identity.profile(), self._now_ms())
        if not marked:
            logger.warning(
                "mark_ready ignored: nonce=%s not pending, unknown or expired (user_id=%s)",
                nonce,
                identity.user_id,
            )
            return False
        _emit_structured_observability(
            component="pairing",
            event="ready",
            user_id=identity.user_id,
            extra={"nonce": nonce},
        )
        return True

    def poll(self, nonce: str) -> PollResult:
        if not is_valid_identifier(nonce):
            return PollResult(POLL_INVALID_NONCE)

        record = self.store.get(nonce)
        if record is None:
            return PollResult(POLL_NOT_FOUND)

        now_ms = self._now_ms()
        if record.is_expired(now_ms):
            return PollResult(POLL_EXPIRED)
        if record.status == PENDING:
            return PollResult(POLL_PENDING)
        if record.status != READY or not record.user_id:
            return PollResult(POLL_INVALID_STATUS)

        consumed = self.store.consume(nonce, now_ms)
        if consumed is None:
            logger.info("poll lost consume race: nonce=%s", nonce)
            return PollResult(POLL_INVALID_STATUS)

        profile = consumed.user_profile or record.user_profile
        user_id = consumed.user_id or record.user_id
        minted = mint_desktop_token(
            user_id,
            profile.get("email", ""),
            now=self.clock(),
            ttl_seconds=self.settings.desktop_token_ttl_seconds,
            first_name=profile.get("firstName", ""),
            last_name=profile.get("lastName", ""),
            token_format=self.settings.desktop_token_format,
            secret=self.settings.desktop_token_secret,
        )
        _emit_structured_observability(
            component="pairing",
            event="consumed",
            user_id=user_id,
            extra={"nonce": nonce, "token_expires_at": minted.expires_at},
        )
        return PollResult(
            POLL_READY,
            token=minted.token,
            expires_at=minted.expires_at,
            user={
                "id": user_id,
                "email": profile.get("email", ""),
                "firstName": profile.get("firstName", ""),
                "lastName": profile.get("lastName", ""),
            },
        )
