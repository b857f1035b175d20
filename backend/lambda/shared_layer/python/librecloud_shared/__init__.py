"""librecloud_shared — Shared utilities for LibreCloud Lambda functions.

Provides:
    - Environment-driven settings and the per-handler context
    - Credential validation (desktop pairing tokens and IdP session tokens)
    - Desktop pairing state machine backed by DynamoDB
    - Document metadata store (DynamoDB) and S3 presigned-URL gateway
    - Fixed-window rate limiting
    - HTTP response helpers with CORS
    - DynamoDB serialization/deserialization
"""

__version__ = "1.0.0"
