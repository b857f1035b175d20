"""librecloud_shared.context — Explicit dependency bundle handed to every handler.

Each Lambda builds one `HandlerContext` per container on first invocation
(`build_default_context`) and passes it to its `handle(event, ctx)` entry
point. Tests build their own with fake clients and a fixed clock.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Optional

from .auth import CredentialValidator
from .aws_clients import _get_ddb, _get_s3
from .config import Settings
from .documents import DocumentStore
from .pairing import PairingService, PairingStore
from .rate_limiting import InMemoryRateLimitStore, RateLimitConfig, RateLimiter
from .storage import ObjectStorageGateway


@dataclass
class HandlerContext:
    settings: Settings
    logger: logging.Logger
    credentials: CredentialValidator
    pairing: PairingService
    documents: DocumentStore
    storage: ObjectStorageGateway
    rate_limiter: RateLimiter
    clock: Callable[[], float] = field(default=time.time)

    @property
    def desktop_init_limit(self) -> RateLimitConfig:
        max_requests, window = self.settings.desktop_init_limit
        return RateLimitConfig(window_seconds=window, max_requests=max_requests)

    @property
    def desktop_token_limit(self) -> RateLimitConfig:
        max_requests, window = self.settings.desktop_token_limit
        return RateLimitConfig(window_seconds=window, max_requests=max_requests)


def configure_logging(level: str) -> None:
    # The Lambda runtime installs its own root handler; only the level is ours.
    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    if not root.handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s [%(name)s] %(message)s")


def build_default_context(
    component: str,
    settings: Optional[Settings] = None,
    clock: Callable[[], float] = time.time,
) -> HandlerContext:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    ddb_factory = partial(_get_ddb, settings.region)
    return HandlerContext(
        settings=settings,
        logger=logging.getLogger(f"librecloud.{component}"),
        credentials=CredentialValidator(settings, clock=clock),
        pairing=PairingService(PairingStore(settings.desktop_login_table, ddb_factory), settings, clock=clock),
        documents=DocumentStore(settings.documents_table, ddb_factory, clock=clock),
        storage=ObjectStorageGateway(settings.s3_bucket, partial(_get_s3, settings.region), clock=clock),
        rate_limiter=RateLimiter(InMemoryRateLimitStore(), clock=clock),
        clock=clock,
    )
