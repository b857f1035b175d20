"""librecloud_shared.testing — In-process stand-ins for handler tests.

`InMemoryPairingStore` mirrors the conditional-write semantics of
`PairingStore` so the pairing state machine can be exercised without DynamoDB;
`make_context` assembles a `HandlerContext` around caller-supplied clients.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Dict, Optional

from .auth import CredentialValidator, SessionVerifier
from .config import Settings
from .context import HandlerContext
from .documents import DocumentStore
from .pairing import CONSUMED, PENDING, READY, PairingRecord, PairingService
from .rate_limiting import InMemoryRateLimitStore, RateLimiter
from .storage import ObjectStorageGateway


class FixedClock:
    """Callable clock frozen at ``now`` (epoch seconds) until advanced."""

    def __init__(self, now: float = 1_767_225_600.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryPairingStore:
    def __init__(self) -> None:
        self.records: Dict[str, PairingRecord] = {}
        self._lock = threading.Lock()

    def create(self, record: PairingRecord) -> None:
        with self._lock:
            if record.nonce in self.records:
                raise ValueError(f"duplicate nonce {record.nonce}")
            self.records[record.nonce] = copy.deepcopy(record)

    def get(self, nonce: str) -> Optional[PairingRecord]:
        with self._lock:
            record = self.records.get(nonce)
            return copy.deepcopy(record) if record else None

    def mark_ready(self, nonce: str, user_id: str, profile: Dict[str, str], now_ms: int) -> bool:
        with self._lock:
            record = self.records.get(nonce)
            if record is None or record.status != PENDING or record.expires_at < now_ms:
                return False
            record.status = READY
            record.user_id = user_id
            record.user_profile = dict(profile)
            record.ready_at = now_ms
            return True

    def consume(self, nonce: str, now_ms: int) -> Optional[PairingRecord]:
        with self._lock:
            record = self.records.get(nonce)
            if record is None or record.status != READY or record.expires_at < now_ms:
                return None
            record.status = CONSUMED
            record.consumed_at = now_ms
            return copy.deepcopy(record)


def make_context(
    *,
    ddb: Any = None,
    s3: Any = None,
    settings: Optional[Settings] = None,
    clock: Optional[FixedClock] = None,
    pairing_store: Any = None,
    session_verifier: Optional[SessionVerifier] = None,
) -> HandlerContext:
    settings = settings or Settings()
    clock = clock or FixedClock()
    store = pairing_store if pairing_store is not None else InMemoryPairingStore()
    return HandlerContext(
        settings=settings,
        logger=logging.getLogger("librecloud.test"),
        credentials=CredentialValidator(settings, session_verifier=session_verifier, clock=clock),
        pairing=PairingService(store, settings, clock=clock),
        documents=DocumentStore(settings.documents_table, lambda: ddb, clock=clock),
        storage=ObjectStorageGateway(settings.s3_bucket, lambda: s3, clock=clock),
        rate_limiter=RateLimiter(InMemoryRateLimitStore(), clock=clock),
        clock=clock,
    )
