"""librecloud_shared.tokens — Desktop pairing token minting and decoding.

Two wire formats are accepted for desktop bearer tokens:

    structured  base64(JSON claims). The default format minted by
                /desktop-token; one-time nonce consumption is what binds it
                to a sign-in.
    signed      HS256 JWT with the same claims, signed with
                DESKTOP_TOKEN_SECRET. Minted when DESKTOP_TOKEN_FORMAT=jwt and
                still accepted from older desktop builds.

Decoding returns a `TokenDecodeResult` for each attempt instead of raising,
so the credential validator can tell "not one of ours" (fall through to the
session scheme) from "ours but invalid" (reject).
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import jwt

from .config import DESKTOP_TOKEN_AUDIENCE, DESKTOP_TOKEN_ISSUER

logger = logging.getLogger(__name__)

DESKTOP_TOKEN_TYPE = "desktop"
REQUIRED_CLAIMS = ("userId", "email", "iat", "exp")

STRUCTURED = "structured"
SIGNED = "signed"
UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class TokenDecodeResult:
    variant: str
    claims: Optional[Dict[str, Any]] = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.claims is not None

    @property
    def recognized(self) -> bool:
        return self.variant != UNRECOGNIZED


@dataclass(frozen=True)
class MintedToken:
    token: str
    claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def expires_at(self) -> int:
        return int(self.claims["exp"])


def _unrecognized(reason: str) -> TokenDecodeResult:
    return TokenDecodeResult(UNRECOGNIZED, reason=reason)


def build_desktop_claims(
    user_id: str,
    email: str,
    *,
    now: float,
    ttl_seconds: int,
    first_name: str = "",
    last_name: str = "",
) -> Dict[str, Any]:
    iat = int(now)
    return {
        "userId": user_id,
        "email": email,
        "firstName": first_name,
        "lastName": last_name,
        "type": DESKTOP_TOKEN_TYPE,
        "iat": iat,
        "exp": iat + int(ttl_seconds),
        "iss": DESKTOP_TOKEN_ISSUER,
        "aud": DESKTOP_TOKEN_AUDIENCE,
    }


def encode_structured(claims: Dict[str, Any]) -> str:
    raw = json.dumps(claims, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def encode_signed(claims: Dict[str, Any], secret: str) -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


def mint_desktop_token(
    user_id: str,
    email: str,
    *,
    now: float,
    ttl_seconds: int,
    first_name: str = "",
    last_name: str = "",
    token_format: str = STRUCTURED,
    secret: str = "",
) -> MintedToken:
    claims = build_desktop_claims(
        user_id,
        email,
        now=now,
        ttl_seconds=ttl_seconds,
        first_name=first_name,
        last_name=last_name,
    )
    if token_format == "jwt":
        return MintedToken(encode_signed(claims, secret), claims)
    return MintedToken(encode_structured(claims), claims)


def _has_required_claims(claims: Dict[str, Any]) -> bool:
    # email may legitimately be blank for IdP accounts without one
    return bool(claims.get("userId")) and all(claims.get(name) is not None for name in REQUIRED_CLAIMS)


def _check_claims(variant: str, claims: Dict[str, Any], now: float) -> TokenDecodeResult:
    """Validate expiry and issuer/audience of a token already recognized as ours."""
    try:
        exp = int(claims["exp"])
    except (TypeError, ValueError):
        return TokenDecodeResult(variant, reason="invalid exp claim")
    if exp < int(now):
        return TokenDecodeResult(variant, reason="token expired")

    issuer = claims.get("iss", claims.get("issuer"))
    if issuer and issuer != DESKTOP_TOKEN_ISSUER:
        return TokenDecodeResult(variant, reason="invalid issuer")

    audience = claims.get("aud", claims.get("audience"))
    if audience and audience != DESKTOP_TOKEN_AUDIENCE:
        return TokenDecodeResult(variant, reason="invalid audience")

    return TokenDecodeResult(variant, claims=claims)


def _b64_json(token: str) -> Optional[Dict[str, Any]]:
    try:
        raw = base64.b64decode(token + "=" * (-len(token) % 4))
        parsed = json.loads(raw.decode("utf-8"))
    except ValueError:
        # binascii.Error, UnicodeDecodeError and JSONDecodeError all land here
        return None
    return parsed if isinstance(parsed, dict) else None


def decode_structured(token: str, now: float) -> TokenDecodeResult:
    claims = _b64_json(token)
    if claims is None:
        return _unrecognized("not base64 JSON")
    if claims.get("type") != DESKTOP_TOKEN_TYPE or not _has_required_claims(claims):
        return _unrecognized("not a desktop token")
    return _check_claims(STRUCTURED, claims, now)


def decode_signed(token: str, secret: str, now: float) -> TokenDecodeResult:
    try:
        unverified = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return _unrecognized("not a JWT")
    if not isinstance(unverified, dict) or unverified.get("type") != DESKTOP_TOKEN_TYPE:
        return _unrecognized("foreign JWT")

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            issuer=DESKTOP_TOKEN_ISSUER,
            audience=DESKTOP_TOKEN_AUDIENCE,
            # expiry is checked against the injected clock below
            options={"verify_exp": False, "verify_iat": False},
        )
    except jwt.PyJWTError as exc:
        return TokenDecodeResult(SIGNED, reason=f"signature validation failed: {exc}")

    if not _has_required_claims(claims):
        return TokenDecodeResult(SIGNED, reason="missing required claims")
    return _check_claims(SIGNED, claims, now)


def decode_desktop_token(token: str, *, secret: str, now: float) -> TokenDecodeResult:
    result = decode_structured(token, now)
    if result.recognized:
        return result
    return decode_signed(token, secret, now)
