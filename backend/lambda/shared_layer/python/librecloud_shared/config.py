"""librecloud_shared.config — Environment-driven settings for LibreCloud Lambdas.

Every Lambda reads the same variables; `Settings.from_env()` is called once per
container when the handler context is first built.

Environment variables:
    AWS_REGION / DYNAMODB_REGION   default: us-east-1
    DOCUMENTS_TABLE                default: librecloud-documents
    DESKTOP_LOGIN_TABLE            default: librecloud-desktop-login
    S3_BUCKET                      default: librecloud-documents
    APP_BASE_URL                   default: http://localhost:3009
    CORS_ORIGIN                    default: *
    IDENTITY_JWKS_URL              JWKS endpoint of the identity provider
    IDENTITY_ISSUER                optional expected `iss` of session tokens
    IDENTITY_AUDIENCE              optional expected `aud` of session tokens
    DESKTOP_TOKEN_SECRET           HS256 secret for signed desktop tokens
    DESKTOP_TOKEN_FORMAT           structured (default) | jwt
    PAIRING_TTL_SECONDS            default: 300
    DESKTOP_TOKEN_TTL_SECONDS      default: 3600
    PRESIGN_EXPIRES_SECONDS        default: 60
    MAX_FILE_SIZE_BYTES            default: 52428800 (50 MB)
    DESKTOP_INIT_RATE_LIMIT        "<max>/<window seconds>", default: 10/900
    DESKTOP_TOKEN_RATE_LIMIT       "<max>/<window seconds>", default: 60/60
    LOG_LEVEL                      default: INFO
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

DESKTOP_TOKEN_ISSUER = "libre-cloud-app"
DESKTOP_TOKEN_AUDIENCE = "libre-cloud-desktop"
DESKTOP_TOKEN_FORMATS = ("structured", "jwt")
_DEV_TOKEN_SECRET = "fallback-secret-for-development"


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be a positive integer, got {value}")
    return value


def _limit_env(env: Mapping[str, str], name: str, default: Tuple[int, int]) -> Tuple[int, int]:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    max_part, sep, window_part = raw.partition("/")
    try:
        max_requests = int(max_part)
        window = int(window_part) if sep else default[1]
    except ValueError as exc:
        raise ConfigError(f"{name} must look like '<max>/<window seconds>', got {raw!r}") from exc
    if max_requests <= 0 or window <= 0:
        raise ConfigError(f"{name} values must be positive, got {raw!r}")
    return max_requests, window


@dataclass(frozen=True)
class Settings:
    region: str = "us-east-1"
    documents_table: str = "librecloud-documents"
    desktop_login_table: str = "librecloud-desktop-login"
    s3_bucket: str = "librecloud-documents"
    app_base_url: str = "http://localhost:3009"
    cors_origin: str = "*"
    identity_jwks_url: str = ""
    identity_issuer: Optional[str] = None
    identity_audience: Optional[str] = None
    desktop_token_secret: str = _DEV_TOKEN_SECRET
    desktop_token_format: str = "structured"
    pairing_ttl_seconds: int = 300
    desktop_token_ttl_seconds: int = 3600
    presign_expires_seconds: int = 60
    max_file_size_bytes: int = 50 * 1024 * 1024
    desktop_init_limit: Tuple[int, int] = (10, 15 * 60)
    desktop_token_limit: Tuple[int, int] = (60, 60)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        token_format = (env.get("DESKTOP_TOKEN_FORMAT") or "structured").strip().lower()
        if token_format not in DESKTOP_TOKEN_FORMATS:
            raise ConfigError(
                f"DESKTOP_TOKEN_FORMAT must be one of {', '.join(DESKTOP_TOKEN_FORMATS)}, got {token_format!r}"
            )
        return cls(
            region=env.get("DYNAMODB_REGION") or env.get("AWS_REGION") or cls.region,
            documents_table=env.get("DOCUMENTS_TABLE") or cls.documents_table,
            desktop_login_table=env.get("DESKTOP_LOGIN_TABLE") or cls.desktop_login_table,
            s3_bucket=env.get("S3_BUCKET") or cls.s3_bucket,
            app_base_url=(env.get("APP_BASE_URL") or cls.app_base_url).rstrip("/"),
            cors_origin=env.get("CORS_ORIGIN") or cls.cors_origin,
            identity_jwks_url=(env.get("IDENTITY_JWKS_URL") or "").strip(),
            identity_issuer=(env.get("IDENTITY_ISSUER") or "").strip() or None,
            identity_audience=(env.get("IDENTITY_AUDIENCE") or "").strip() or None,
            desktop_token_secret=env.get("DESKTOP_TOKEN_SECRET") or _DEV_TOKEN_SECRET,
            desktop_token_format=token_format,
            pairing_ttl_seconds=_int_env(env, "PAIRING_TTL_SECONDS", cls.pairing_ttl_seconds),
            desktop_token_ttl_seconds=_int_env(env, "DESKTOP_TOKEN_TTL_SECONDS", cls.desktop_token_ttl_seconds),
            presign_expires_seconds=_int_env(env, "PRESIGN_EXPIRES_SECONDS", cls.presign_expires_seconds),
            max_file_size_bytes=_int_env(env, "MAX_FILE_SIZE_BYTES", cls.max_file_size_bytes),
            desktop_init_limit=_limit_env(env, "DESKTOP_INIT_RATE_LIMIT", cls.desktop_init_limit),
            desktop_token_limit=_limit_env(env, "DESKTOP_TOKEN_RATE_LIMIT", cls.desktop_token_limit),
            log_level=(env.get("LOG_LEVEL") or cls.log_level).strip().upper(),
        )
