"""test_desktop_token.py — Handler tests for the desktop token polling Lambda.

Run: python3 -m pytest test_desktop_token.py -v
"""

from __future__ import annotations

import importlib.util
import json
import os
import sys
import unittest
from unittest.mock import patch

_HERE = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.join(_HERE, "..", "shared_layer", "python"))

from librecloud_shared.auth import SESSION, Identity
from librecloud_shared.testing import FixedClock, make_context
from librecloud_shared.tokens import decode_desktop_token

_spec = importlib.util.spec_from_file_location(
    "desktop_token_lambda",
    os.path.join(_HERE, "lambda_function.py"),
)
desktop_token = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(desktop_token)

UNKNOWN_NONCE = "550e8400-e29b-41d4-a716-446655440000"
IDENTITY = Identity(user_id="user_123", type=SESSION, email="ada@example.com", first_name="Ada")


def _make_event(nonce=None, method="GET", ip="203.0.113.1"):
    return {
        "requestContext": {"http": {"method": method, "path": "/api/desktop-token"}},
        "rawPath": "/api/desktop-token",
        "headers": {"x-forwarded-for": ip},
        "queryStringParameters": {"nonce": nonce} if nonce is not None else None,
    }


class DesktopTokenTests(unittest.TestCase):
    def setUp(self):
        self.clock = FixedClock()
        self.ctx = make_context(clock=self.clock)

    def _poll(self, nonce, **kwargs):
        resp = desktop_token.handle(_make_event(nonce, **kwargs), self.ctx)
        return resp["statusCode"], json.loads(resp["body"]) if resp["body"] else {}, resp["headers"]

    def test_options_returns_preflight(self):
        resp = desktop_token.handle(_make_event(method="OPTIONS"), self.ctx)
        self.assertEqual(resp["statusCode"], 200)

    def test_post_not_allowed(self):
        self.assertEqual(desktop_token.handle(_make_event(method="POST"), self.ctx)["statusCode"], 405)

    def test_missing_nonce(self):
        status, body, _ = self._poll(None)
        self.assertEqual(status, 400)
        self.assertEqual(body["error"], "Nonce is required")

    def test_malformed_nonce(self):
        status, body, _ = self._poll("not-a-uuid-at-all")
        self.assertEqual(status, 400)
        self.assertEqual(body["error"], "Invalid nonce format")

    def test_unknown_nonce(self):
        status, body, _ = self._poll(UNKNOWN_NONCE)
        self.assertEqual(status, 404)
        self.assertEqual(body["error"], "Invalid or expired nonce")

    def test_pending_nonce(self):
        nonce = self.ctx.pairing.initiate().nonce
        status, body, _ = self._poll(nonce)
        self.assertEqual(status, 202)
        self.assertEqual(body["status"], "pending")

    def test_expired_nonce(self):
        nonce = self.ctx.pairing.initiate().nonce
        self.clock.advance(301)
        status, body, _ = self._poll(nonce)
        self.assertEqual(status, 410)
        self.assertEqual(body["error"], "Nonce has expired")
        self.assertEqual(body["error_envelope"]["code"], "EXPIRED")

    def test_ready_nonce_issues_token_once(self):
        nonce = self.ctx.pairing.initiate().nonce
        self.ctx.pairing.mark_ready(nonce, IDENTITY)

        status, body, headers = self._poll(nonce)
        self.assertEqual(status, 200)
        self.assertEqual(headers["Cache-Control"], "no-store")
        self.assertEqual(body["expiresAt"], 1_767_225_600 + 3600)
        self.assertEqual(body["user"]["id"], "user_123")
        self.assertEqual(body["user"]["firstName"], "Ada")

        decoded = decode_desktop_token(body["token"], secret=self.ctx.settings.desktop_token_secret, now=self.clock())
        self.assertTrue(decoded.ok)

        # the minted token authenticates document requests
        identity = self.ctx.credentials.validate({"headers": {"Authorization": f"Bearer {body['token']}"}})
        self.assertEqual(identity.user_id, "user_123")

        status, body, _ = self._poll(nonce)
        self.assertEqual(status, 400)
        self.assertEqual(body["error"], "Invalid nonce status")

    def test_rate_limited_polling(self):
        nonce = self.ctx.pairing.initiate().nonce
        for _ in range(60):
            self.assertEqual(self._poll(nonce)[0], 202)
        status, body, headers = self._poll(nonce)
        self.assertEqual(status, 429)
        self.assertEqual(body["retryAfter"], 60)
        self.assertIn("Retry-After", headers)

        self.clock.advance(61)
        self.assertEqual(self._poll(nonce)[0], 202)

    def test_store_failure_returns_500(self):
        with patch.object(self.ctx.pairing.store, "get", side_effect=RuntimeError("ddb down")):
            status, body, _ = self._poll(UNKNOWN_NONCE)
        self.assertEqual(status, 500)
        self.assertTrue(body["error_envelope"]["retryable"])


if __name__ == "__main__":
    unittest.main()
