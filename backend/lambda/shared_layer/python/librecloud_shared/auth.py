"""librecloud_shared.auth — Credential validation for LibreCloud Lambdas.

Two schemes are tried in fixed order:

    1. Desktop pairing token from `Authorization: Bearer <token>` (structured
       base64 JSON first, legacy HS256 JWT second; see `tokens`).
    2. Identity-provider session token, from the same bearer header or the
       browser `__session` cookie, validated as an RS256 JWT against the
       provider JWKS endpoint.

Validation never raises: an unauthenticated request yields `None` and the
handler turns that into a 401.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote

import jwt
from jwt.algorithms import RSAAlgorithm

from .config import Settings
from .http_utils import _error, _header
from .tokens import decode_desktop_token

logger = logging.getLogger(__name__)

PAIRING = "pairing"
SESSION = "session"
SESSION_COOKIE_NAME = "__session"

_JWKS_TTL: float = 3600.0


@dataclass(frozen=True)
class Identity:
    user_id: str
    type: str
    email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    claims: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    def profile(self) -> Dict[str, str]:
        """Snapshot attached to a pairing record when it becomes ready."""
        return {
            "email": self.email or "",
            "firstName": self.first_name,
            "lastName": self.last_name,
        }


def _extract_bearer_token(event: Dict[str, Any]) -> Optional[str]:
    auth_header = _header(event, "authorization") or ""
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[len("Bearer "):].strip()
    return token or None


def _extract_session_cookie(event: Dict[str, Any]) -> Optional[str]:
    """Extract the session cookie from the Cookie header or API GW v2 cookies array."""
    cookie_parts: List[str] = []
    cookie_header = _header(event, "cookie") or ""
    if cookie_header:
        cookie_parts.extend(part.strip() for part in cookie_header.split(";") if part.strip())

    event_cookies = event.get("cookies") or []
    if isinstance(event_cookies, list):
        cookie_parts.extend(
            part.strip() for part in event_cookies if isinstance(part, str) and part.strip()
        )
    elif isinstance(event_cookies, str) and event_cookies.strip():
        cookie_parts.append(event_cookies.strip())

    prefix = f"{SESSION_COOKIE_NAME}="
    for part in cookie_parts:
        if part.startswith(prefix):
            return unquote(part[len(prefix):]) or None
    return None


class SessionVerifier:
    """Verifies identity-provider session JWTs (RS256) against a cached JWKS."""

    def __init__(
        self,
        jwks_url: str,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.jwks_url = jwks_url
        self.issuer = issuer
        self.audience = audience
        self.clock = clock
        self._jwks_cache: Dict[str, Any] = {}
        self._jwks_fetched_at: float = 0.0

    def _fetch_jwks(self) -> Dict[str, Any]:
        with urllib.request.urlopen(self.jwks_url, timeout=5) as resp:
            return json.loads(resp.read())

    def _get_jwks(self) -> Dict[str, Any]:
        """Fetch (and cache) the provider JWKS, keyed by kid."""
        now = self.clock()
        if self._jwks_cache and (now - self._jwks_fetched_at) < _JWKS_TTL:
            return self._jwks_cache
        if not self.jwks_url:
            raise ValueError("IDENTITY_JWKS_URL not set")

        data = self._fetch_jwks()
        new_cache: Dict[str, Any] = {}
        for key_data in data.get("keys", []):
            kid = key_data.get("kid")
            if kid:
                new_cache[kid] = RSAAlgorithm.from_jwk(json.dumps(key_data))

        self._jwks_cache = new_cache
        self._jwks_fetched_at = now
        return self._jwks_cache

    def verify(self, token: str) -> Dict[str, Any]:
        """Verify a session JWT. Returns decoded claims; raises ValueError on failure."""
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as exc:
            raise ValueError(f"Invalid token header: {exc}") from exc

        alg = header.get("alg", "RS256")
        if alg != "RS256":
            raise ValueError(f"Unexpected token algorithm: {alg}")

        key = self._get_jwks().get(header.get("kid"))
        if key is None:
            raise ValueError("Token key ID not found in JWKS")

        options: Dict[str, Any] = {"verify_exp": True, "verify_aud": bool(self.audience)}
        kwargs: Dict[str, Any] = {}
        if self.audience:
            kwargs["audience"] = self.audience
        if self.issuer:
            kwargs["issuer"] = self.issuer
        try:
            return jwt.decode(token, key, algorithms=["RS256"], options=options, **kwargs)
        except jwt.ExpiredSignatureError:
            raise ValueError("Token has expired. Please sign in again.")
        except jwt.InvalidAudienceError:
            raise ValueError("Token audience mismatch.")
        except jwt.InvalidIssuerError:
            raise ValueError("Token issuer mismatch.")
        except jwt.PyJWTError as exc:
            raise ValueError(f"Token validation failed: {exc}") from exc


class CredentialValidator:
    def __init__(
        self,
        settings: Settings,
        session_verifier: Optional[SessionVerifier] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self.session_verifier = session_verifier or SessionVerifier(
            settings.identity_jwks_url,
            issuer=settings.identity_issuer,
            audience=settings.identity_audience,
            clock=clock,
        )

    def validate_pairing_token(self, token: str) -> Optional[Identity]:
        result = decode_desktop_token(
            token, secret=self.settings.desktop_token_secret, now=self.clock()
        )
        if not result.ok:
            if result.recognized:
                logger.info("desktop token rejected: variant=%s reason=%s", result.variant, result.reason)
            return None
        claims = result.claims or {}
        return Identity(
            user_id=str(claims["userId"]),
            type=PAIRING,
            email=str(claims["email"]),
            first_name=str(claims.get("firstName") or ""),
            last_name=str(claims.get("lastName") or ""),
            claims=claims,
        )

    def validate_session_token(self, token: str) -> Optional[Identity]:
        try:
            claims = self.session_verifier.verify(token)
        except ValueError as exc:
            logger.info("session token rejected: %s", exc)
            return None
        except Exception as exc:
            # JWKS endpoint unreachable and similar; the request is simply unauthenticated
            logger.warning("session verification unavailable: %s", exc)
            return None

        subject = claims.get("sub")
        if not subject:
            logger.info("session token rejected: missing subject claim")
            return None
        return Identity(
            user_id=str(subject),
            type=SESSION,
            email=claims.get("email") or None,
            first_name=str(claims.get("first_name") or claims.get("given_name") or ""),
            last_name=str(claims.get("last_name") or claims.get("family_name") or ""),
            claims=claims,
        )

    def validate(self, event: Dict[str, Any], session_only: bool = False) -> Optional[Identity]:
        bearer = _extract_bearer_token(event)

        if bearer and not session_only:
            identity = self.validate_pairing_token(bearer)
            if identity is not None:
                return identity

        session_token = bearer or _extract_session_cookie(event)
        if not session_token:
            return None
        return self.validate_session_token(session_token)


def _authenticate(
    event: Dict[str, Any],
    validator: CredentialValidator,
    *,
    headers: Optional[Dict[str, str]] = None,
    session_only: bool = False,
) -> Tuple[Optional[Identity], Optional[Dict[str, Any]]]:
    """Authenticate a request.

    Returns (identity, None) on success or (None, error_response) on failure.
    """
    identity = validator.validate(event, session_only=session_only)
    if identity is None:
        message = "Unauthorized" if session_only else "Invalid or missing authorization token"
        return None, _error(401, message, headers)
    return identity, None
