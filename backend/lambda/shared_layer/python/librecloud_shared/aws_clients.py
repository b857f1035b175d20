"""librecloud_shared.aws_clients — Lazy-singleton AWS service clients.

Provides factory functions that create boto3 clients on first call and
cache them for subsequent invocations. This avoids paying the boto3 client
construction cost on cold starts until the client is actually needed.
"""

from __future__ import annotations

import os
from typing import Optional

import boto3
from botocore.config import Config

DEFAULT_REGION: str = os.environ.get(
    "DYNAMODB_REGION", os.environ.get("AWS_REGION", "us-east-1")
)

_ddb = None
_s3 = None


def _get_ddb(region: Optional[str] = None):
    """Get (or create) the DynamoDB client singleton."""
    global _ddb
    if _ddb is None:
        _ddb = boto3.client(
            "dynamodb",
            region_name=region or DEFAULT_REGION,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
    return _ddb


def _get_s3(region: Optional[str] = None):
    """Get (or create) the S3 client singleton.

    Presigned URLs are signed with SigV4 so they stay valid for buckets in
    regions that reject SigV2.
    """
    global _s3
    if _s3 is None:
        _s3 = boto3.client(
            "s3",
            region_name=region or DEFAULT_REGION,
            config=Config(
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "standard"},
            ),
        )
    return _s3
