"""test_layer.py — Unit tests for librecloud_shared layer modules.

Run from shared_layer directory:
    PYTHONPATH=python python3 -m pytest test_layer.py -v
"""

from __future__ import annotations

import base64
import json
import os
import sys
import unittest
from unittest.mock import MagicMock, patch

# Ensure the layer's python/ directory is importable.
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "python"))

from librecloud_shared.aws_clients import _get_ddb, _get_s3
from librecloud_shared.config import ConfigError, Settings
from librecloud_shared.context import HandlerContext, build_default_context
from librecloud_shared.http_utils import (
    _cors_headers,
    _error,
    _header,
    _json_body,
    _path_method,
    _preflight,
    _request_meta,
    _response,
)
from librecloud_shared.rate_limiting import (
    InMemoryRateLimitStore,
    RateLimitConfig,
    RateLimiter,
    get_client_ip,
    rate_limit_headers,
)
from librecloud_shared.serialization import (
    _deserialize,
    _epoch_ms,
    _now_z,
    _serialize,
    _serialize_item,
)
from librecloud_shared.testing import FixedClock
from librecloud_shared.validation import (
    is_allowed_file_type,
    is_positive_number,
    is_valid_identifier,
    with_extension,
)

VALID_UUID = "550e8400-e29b-41d4-a716-446655440000"


class HttpUtilsTests(unittest.TestCase):
    def test_response_format(self):
        resp = _response(200, {"key": "val"})
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(resp["headers"]["Content-Type"], "application/json")
        self.assertEqual(resp["headers"]["Access-Control-Allow-Origin"], "*")
        body = json.loads(resp["body"])
        self.assertEqual(body["key"], "val")

    def test_cors_headers(self):
        headers = _cors_headers(("GET", "OPTIONS"), "https://app.example.com")
        self.assertEqual(headers["Access-Control-Allow-Origin"], "https://app.example.com")
        self.assertEqual(headers["Access-Control-Allow-Methods"], "GET, OPTIONS")
        self.assertEqual(headers["Access-Control-Allow-Headers"], "Content-Type, Authorization, User-Agent")
        self.assertEqual(headers["Access-Control-Max-Age"], "86400")

    def test_error_format(self):
        resp = _error(400, "bad input")
        self.assertEqual(resp["statusCode"], 400)
        body = json.loads(resp["body"])
        self.assertFalse(body["success"])
        self.assertEqual(body["error"], "bad input")
        self.assertEqual(body["error_envelope"]["code"], "INVALID_INPUT")
        self.assertFalse(body["error_envelope"]["retryable"])

    def test_error_codes_by_status(self):
        self.assertEqual(json.loads(_error(410, "gone")["body"])["error_envelope"]["code"], "EXPIRED")
        limited = json.loads(_error(429, "slow down")["body"])["error_envelope"]
        self.assertEqual(limited["code"], "RATE_LIMITED")
        self.assertTrue(limited["retryable"])
        self.assertEqual(json.loads(_error(500, "boom")["body"])["error_envelope"]["code"], "INTERNAL_ERROR")

    def test_error_explicit_code_and_extra_fields(self):
        body = json.loads(_error(500, "partial", code="partial_delete", failed=["storage"])["body"])
        self.assertEqual(body["error_envelope"]["code"], "PARTIAL_DELETE")
        self.assertEqual(body["failed"], ["storage"])
        self.assertEqual(body["error_envelope"]["details"], {"failed": ["storage"]})

    def test_preflight_has_empty_body(self):
        resp = _preflight(_cors_headers())
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(resp["body"], "")

    def test_json_body(self):
        event = {"body": '{"key": "val"}', "isBase64Encoded": False}
        self.assertEqual(_json_body(event), {"key": "val"})

    def test_json_body_base64(self):
        raw = base64.b64encode(b'{"key": "b64"}').decode()
        event = {"body": raw, "isBase64Encoded": True}
        self.assertEqual(_json_body(event), {"key": "b64"})

    def test_json_body_absent_is_empty(self):
        self.assertEqual(_json_body({}), {})
        self.assertEqual(_json_body({"body": ""}), {})

    def test_json_body_rejects_malformed_and_non_object(self):
        with self.assertRaises(ValueError):
            _json_body({"body": "{not json"})
        with self.assertRaises(ValueError):
            _json_body({"body": "[1, 2]"})

    def test_path_method(self):
        event = {
            "requestContext": {"http": {"method": "POST", "path": "/api/desktop-init"}},
        }
        method, path = _path_method(event)
        self.assertEqual(method, "POST")
        self.assertEqual(path, "/api/desktop-init")

    def test_path_method_v1_event(self):
        method, path = _path_method({"httpMethod": "patch", "path": "/api/documents/x"})
        self.assertEqual(method, "PATCH")
        self.assertEqual(path, "/api/documents/x")

    def test_header_lookup_is_case_insensitive(self):
        event = {"headers": {"Authorization": "Bearer abc"}}
        self.assertEqual(_header(event, "authorization"), "Bearer abc")
        self.assertIsNone(_header(event, "cookie"))

    def test_request_meta(self):
        event = {"requestContext": {"requestId": "req-1"}, "headers": {"User-Agent": "LibreCloud/1.0"}}
        meta = _request_meta(event, "203.0.113.1")
        self.assertEqual(meta, {"request_id": "req-1", "user_agent": "LibreCloud/1.0", "ip": "203.0.113.1"})


class SerializationTests(unittest.TestCase):
    def test_serialize_string(self):
        result = _serialize("hello")
        self.assertEqual(result, {"S": "hello"})

    def test_serialize_float(self):
        result = _serialize(3.14)
        self.assertEqual(result["N"], "3.14")

    def test_serialize_nested_float(self):
        result = _serialize({"ratio": 0.5})
        self.assertEqual(result, {"M": {"ratio": {"N": "0.5"}}})

    def test_serialize_deeply_nested_float(self):
        result = _serialize({"meta": {"scores": [0.25, {"w": 1.5}]}})
        self.assertEqual(
            result,
            {"M": {"meta": {"M": {"scores": {"L": [{"N": "0.25"}, {"M": {"w": {"N": "1.5"}}}]}}}}},
        )

    def test_serialize_item_drops_none(self):
        result = _serialize_item({"nonce": "n", "readyAt": None})
        self.assertEqual(result, {"nonce": {"S": "n"}})

    def test_deserialize_item(self):
        item = {
            "name": {"S": "test"},
            "count": {"N": "42"},
            "data": {"M": {"size": {"N": "1.5"}}},
        }
        result = _deserialize(item)
        self.assertEqual(result["name"], "test")
        self.assertEqual(result["count"], 42)
        self.assertIsInstance(result["count"], int)
        self.assertEqual(result["data"], {"size": 1.5})

    def test_now_z_format(self):
        ts = _now_z()
        self.assertTrue(ts.endswith("Z"))
        self.assertRegex(ts, r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")

    def test_now_z_fixed_instant(self):
        self.assertEqual(_now_z(1_767_225_600.5), "2026-01-01T00:00:00.500Z")

    def test_epoch_ms(self):
        self.assertEqual(_epoch_ms(1_767_225_600.25), 1_767_225_600_250)


class ConfigTests(unittest.TestCase):
    def test_defaults(self):
        settings = Settings.from_env({})
        self.assertEqual(settings.pairing_ttl_seconds, 300)
        self.assertEqual(settings.presign_expires_seconds, 60)
        self.assertEqual(settings.max_file_size_bytes, 50 * 1024 * 1024)
        self.assertEqual(settings.desktop_init_limit, (10, 900))
        self.assertEqual(settings.desktop_token_limit, (60, 60))
        self.assertEqual(settings.desktop_token_format, "structured")
        self.assertEqual(settings.desktop_token_secret, "fallback-secret-for-development")

    def test_overrides(self):
        settings = Settings.from_env(
            {
                "APP_BASE_URL": "https://cloud.example.com/",
                "DESKTOP_INIT_RATE_LIMIT": "5/60",
                "DESKTOP_TOKEN_FORMAT": "JWT",
                "PAIRING_TTL_SECONDS": "120",
                "IDENTITY_AUDIENCE": "  ",
                "LOG_LEVEL": "debug",
            }
        )
        self.assertEqual(settings.app_base_url, "https://cloud.example.com")
        self.assertEqual(settings.desktop_init_limit, (5, 60))
        self.assertEqual(settings.desktop_token_format, "jwt")
        self.assertEqual(settings.pairing_ttl_seconds, 120)
        self.assertIsNone(settings.identity_audience)
        self.assertEqual(settings.log_level, "DEBUG")

    def test_limit_without_window_keeps_default_window(self):
        settings = Settings.from_env({"DESKTOP_TOKEN_RATE_LIMIT": "30"})
        self.assertEqual(settings.desktop_token_limit, (30, 60))

    def test_invalid_values_raise(self):
        with self.assertRaises(ConfigError):
            Settings.from_env({"PAIRING_TTL_SECONDS": "soon"})
        with self.assertRaises(ConfigError):
            Settings.from_env({"PRESIGN_EXPIRES_SECONDS": "0"})
        with self.assertRaises(ConfigError):
            Settings.from_env({"DESKTOP_INIT_RATE_LIMIT": "ten/minute"})
        with self.assertRaises(ConfigError):
            Settings.from_env({"DESKTOP_TOKEN_FORMAT": "xml"})


class ValidationTests(unittest.TestCase):
    def test_identifier(self):
        self.assertTrue(is_valid_identifier(VALID_UUID))
        self.assertTrue(is_valid_identifier(VALID_UUID.upper()))
        self.assertFalse(is_valid_identifier("not-a-uuid-at-all"))
        self.assertFalse(is_valid_identifier(""))
        self.assertFalse(is_valid_identifier(None))
        # version nibble 0 is outside 1-5
        self.assertFalse(is_valid_identifier("550e8400-e29b-01d4-a716-446655440000"))
        # trailing or leading whitespace is not part of an identifier
        self.assertFalse(is_valid_identifier(VALID_UUID + "\n"))
        self.assertFalse(is_valid_identifier(" " + VALID_UUID))
        self.assertFalse(is_valid_identifier(VALID_UUID + "0"))

    def test_allowed_file_type(self):
        self.assertTrue(is_allowed_file_type("application/pdf"))
        self.assertTrue(is_allowed_file_type("application/vnd.oasis.opendocument.text"))
        self.assertTrue(is_allowed_file_type("audio/mpeg"))
        self.assertFalse(is_allowed_file_type("application/x-msdownload"))
        self.assertFalse(is_allowed_file_type(None))

    def test_with_extension(self):
        self.assertEqual(with_extension("report", "application/pdf"), "report.pdf")
        self.assertEqual(with_extension("report.PDF", "application/pdf"), "report.PDF")
        self.assertEqual(with_extension("notes", "application/x-unknown"), "notes")

    def test_positive_number(self):
        self.assertTrue(is_positive_number(1))
        self.assertTrue(is_positive_number(0.5))
        self.assertFalse(is_positive_number(0))
        self.assertFalse(is_positive_number(-3))
        self.assertFalse(is_positive_number("12"))
        self.assertFalse(is_positive_number(True))
        self.assertFalse(is_positive_number(float("inf")))
        self.assertFalse(is_positive_number(float("nan")))
        self.assertTrue(is_positive_number(50 * 1024 * 1024))


class RateLimiterTests(unittest.TestCase):
    def setUp(self):
        self.clock = FixedClock()
        self.store = InMemoryRateLimitStore()
        self.limiter = RateLimiter(self.store, clock=self.clock)
        self.config = RateLimitConfig(window_seconds=60, max_requests=3)

    def test_allows_up_to_max_then_rejects(self):
        results = [self.limiter.check("ip-1", self.config) for _ in range(3)]
        self.assertTrue(all(r.allowed for r in results))
        self.assertEqual([r.remaining_requests for r in results], [2, 1, 0])

        self.clock.advance(10)
        rejected = self.limiter.check("ip-1", self.config)
        self.assertFalse(rejected.allowed)
        self.assertEqual(rejected.remaining_requests, 0)
        self.assertEqual(rejected.retry_after, 50)

    def test_identifiers_are_independent(self):
        for _ in range(3):
            self.limiter.check("ip-1", self.config)
        self.assertTrue(self.limiter.check("ip-2", self.config).allowed)

    def test_window_resets_after_elapsing(self):
        for _ in range(4):
            self.limiter.check("ip-1", self.config)
        self.clock.advance(61)
        result = self.limiter.check("ip-1", self.config)
        self.assertTrue(result.allowed)
        self.assertEqual(result.remaining_requests, 2)

    def test_expired_windows_are_purged(self):
        self.limiter.check("ip-1", self.config)
        self.limiter.check("ip-2", self.config)
        self.assertEqual(len(self.store), 2)
        self.clock.advance(61)
        self.limiter.check("ip-3", self.config)
        self.assertEqual(len(self.store), 1)

    def test_config_rejects_non_positive_values(self):
        with self.assertRaises(ValueError):
            RateLimitConfig(window_seconds=0, max_requests=1)
        with self.assertRaises(ValueError):
            RateLimitConfig(window_seconds=60, max_requests=0)

    def test_rate_limit_headers(self):
        allowed = self.limiter.check("ip-1", self.config)
        headers = rate_limit_headers(self.config, allowed)
        self.assertEqual(headers["X-RateLimit-Limit"], "3")
        self.assertEqual(headers["X-RateLimit-Remaining"], "2")
        self.assertEqual(headers["X-RateLimit-Reset"], "2026-01-01T00:01:00.000Z")
        self.assertNotIn("Retry-After", headers)

        for _ in range(3):
            rejected = self.limiter.check("ip-1", self.config)
        self.assertEqual(rate_limit_headers(self.config, rejected)["Retry-After"], "60")


class ClientIpTests(unittest.TestCase):
    def test_forwarded_for_takes_first_entry(self):
        headers = {"x-forwarded-for": "  203.0.113.1  ,  198.51.100.1  "}
        self.assertEqual(get_client_ip(headers), "203.0.113.1")

    def test_header_precedence(self):
        headers = {"X-Real-IP": "198.51.100.7", "CF-Connecting-IP": "192.0.2.9"}
        self.assertEqual(get_client_ip(headers), "198.51.100.7")
        self.assertEqual(get_client_ip({"cf-connecting-ip": "192.0.2.9"}), "192.0.2.9")

    def test_fallback(self):
        self.assertEqual(get_client_ip({}), "localhost")
        self.assertEqual(get_client_ip(None), "localhost")
        self.assertEqual(get_client_ip({"x-forwarded-for": " , "}), "localhost")


class AwsClientTests(unittest.TestCase):
    @patch("librecloud_shared.aws_clients.boto3")
    def test_get_ddb_singleton(self, mock_boto3):
        import librecloud_shared.aws_clients as clients

        clients._ddb = None  # Reset singleton
        mock_client = MagicMock()
        mock_boto3.client.return_value = mock_client

        result1 = _get_ddb()
        result2 = _get_ddb("eu-west-1")

        # Same object returned both times.
        self.assertIs(result1, result2)
        # boto3.client called only once.
        mock_boto3.client.assert_called_once()

        clients._ddb = None  # Clean up

    @patch("librecloud_shared.aws_clients.boto3")
    def test_get_s3_uses_sigv4(self, mock_boto3):
        import librecloud_shared.aws_clients as clients

        clients._s3 = None
        _get_s3("eu-west-1")
        _, kwargs = mock_boto3.client.call_args
        self.assertEqual(kwargs["region_name"], "eu-west-1")
        self.assertEqual(kwargs["config"].signature_version, "s3v4")

        clients._s3 = None


class ContextTests(unittest.TestCase):
    def test_build_default_context_wires_settings(self):
        settings = Settings(desktop_login_table="pairing-t", documents_table="docs-t", s3_bucket="bucket-b")
        ctx = build_default_context("unit-test", settings=settings)
        self.assertIsInstance(ctx, HandlerContext)
        self.assertEqual(ctx.pairing.store.table_name, "pairing-t")
        self.assertEqual(ctx.documents.table_name, "docs-t")
        self.assertEqual(ctx.storage.bucket, "bucket-b")
        self.assertEqual(ctx.logger.name, "librecloud.unit-test")

    def test_limit_properties(self):
        ctx = build_default_context("unit-test", settings=Settings(desktop_init_limit=(4, 30)))
        self.assertEqual(ctx.desktop_init_limit, RateLimitConfig(window_seconds=30, max_requests=4))
        self.assertEqual(ctx.desktop_token_limit, RateLimitConfig(window_seconds=60, max_requests=60))


if __name__ == "__main__":
    unittest.main()
