import os
import unittest
from unittest.mock import MagicMock, patch

import fakeredis
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from gateway.app import create_app
from gateway.config import Settings
from gateway.dependencies import get_kv_client, get_secret_broker
from gateway.kv import InMemoryKeyValueClient, RedisKeyValueClient
from gateway.middleware import build_policies, resolve_policy
from gateway.storage import S3StorageClient

KEYS_AUTH = "keys-auth-value"
USER_DB_AUTH = "user-db-auth-value"
R2_KEY_SECRET = "r2-key-value"


def _settings(**overrides) -> Settings:
    values = dict(
        keys_auth=KEYS_AUTH,
        user_db_auth=USER_DB_AUTH,
        r2_key_secret=R2_KEY_SECRET,
        hmac_key="signing-key",
        cors_allow_origin="https://app.example.com",
        use_in_memory_backends=True,
    )
    values.update(overrides)
    return Settings(**values)


class PreflightTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app(_settings()))

    def test_options_answers_204_without_body_on_every_prefix(self):
        expected_methods = {
            "/keys/ACCOUNT_HASH": "GET, POST, OPTIONS",
            "/users/u1": "GET, PUT, DELETE, OPTIONS",
            "/data/u1/data.json": "GET, HEAD, PUT, DELETE, OPTIONS",
            "/images/img-1": "GET, POST, DELETE, OPTIONS",
            "/turnstile": "POST, OPTIONS",
            "/audit/": "GET, POST, OPTIONS",
        }
        for path, methods in expected_methods.items():
            response = self.client.options(path)
            self.assertEqual(response.status_code, 204, path)
            self.assertEqual(response.content, b"")
            self.assertEqual(
                response.headers["access-control-allow-origin"],
                "https://app.example.com",
            )
            self.assertEqual(response.headers["access-control-allow-methods"], methods)
            self.assertIn("Content-Type", response.headers["access-control-allow-headers"])

    def test_images_preflight_allows_authorization_header(self):
        response = self.client.options("/images")
        self.assertIn("Authorization", response.headers["access-control-allow-headers"])

    def test_cors_headers_on_regular_and_error_responses(self):
        ok = self.client.get("/images/hash/img-1/public")
        self.assertEqual(ok.headers["access-control-allow-origin"], "https://app.example.com")
        denied = self.client.get("/users/u1")
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(
            denied.headers["access-control-allow-origin"], "https://app.example.com"
        )


class HeaderAuthTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app(_settings()))

    def test_each_prefix_checks_its_own_secret(self):
        cases = [
            ("/keys/ACCOUNT_HASH", KEYS_AUTH),
            ("/users/u1", USER_DB_AUTH),
            ("/data/u1/data.json", R2_KEY_SECRET),
            ("/audit/?userId=u1", R2_KEY_SECRET),
        ]
        for path, secret in cases:
            for other in {KEYS_AUTH, USER_DB_AUTH, R2_KEY_SECRET} - {secret}:
                response = self.client.get(path, headers={"X-Custom-Auth-Key": other})
                self.assertEqual(response.status_code, 403, path)

    def test_forbidden_body_shape(self):
        keys = self.client.get("/keys/ACCOUNT_HASH")
        self.assertEqual(keys.text, "Forbidden")
        users = self.client.get("/users/u1")
        self.assertEqual(users.json(), {"success": False, "error": "Forbidden"})

    def test_auth_is_checked_before_method_routing(self):
        response = self.client.patch("/users/u1", json={})
        self.assertEqual(response.status_code, 403)

        response = self.client.patch(
            "/users/u1", json={}, headers={"X-Custom-Auth-Key": USER_DB_AUTH}
        )
        self.assertEqual(response.status_code, 405)
        self.assertEqual(
            response.json(), {"success": False, "error": "Method Not Allowed"}
        )

    def test_unset_secret_rejects_everything(self):
        client = TestClient(create_app(_settings(user_db_auth=None)))
        for headers in ({}, {"X-Custom-Auth-Key": ""}, {"X-Custom-Auth-Key": "None"}):
            response = client.get("/users/u1", headers=headers)
            self.assertEqual(response.status_code, 403)

    def test_unknown_paths_are_plain_404(self):
        response = self.client.get("/nowhere")
        self.assertEqual(response.status_code, 404)
        self.assertNotIn("access-control-allow-origin", response.headers)


class PolicyTests(unittest.TestCase):
    def test_prefix_matching_is_segment_aware(self):
        policies = build_policies(_settings())
        self.assertEqual(resolve_policy(policies, "/users").prefix, "/users")
        self.assertEqual(resolve_policy(policies, "/users/u1/cases").prefix, "/users")
        self.assertIsNone(resolve_policy(policies, "/usersx"))
        self.assertIsNone(resolve_policy(policies, "/"))


class UnexpectedErrorTests(unittest.TestCase):
    def test_unhandled_error_is_generic_500_with_cors(self):
        def exploding_kv():
            raise RuntimeError("kv exploded at 10.0.0.7")

        app = create_app(_settings())
        app.dependency_overrides[get_kv_client] = exploding_kv
        client = TestClient(app)

        response = client.get("/users/u1", headers={"X-Custom-Auth-Key": USER_DB_AUTH})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(
            response.json(), {"success": False, "error": "Internal Server Error"}
        )
        self.assertEqual(
            response.headers["access-control-allow-origin"], "https://app.example.com"
        )
        self.assertNotIn("10.0.0.7", response.text)

    def test_unhandled_error_under_keys_is_plain_text(self):
        def exploding_broker():
            raise RuntimeError("boom")

        app = create_app(_settings())
        app.dependency_overrides[get_secret_broker] = exploding_broker
        client = TestClient(app)
        response = client.get("/keys/ACCOUNT_HASH", headers={"X-Custom-Auth-Key": KEYS_AUTH})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.text, "Internal Server Error")
        self.assertIn("access-control-allow-methods", response.headers)


class BackendWiringTests(unittest.TestCase):
    def test_redis_backend_follows_injected_settings(self):
        fake = fakeredis.FakeRedis()
        settings = _settings(
            use_in_memory_backends=False,
            redis_url="redis://profiles.internal:6390/0",
            profile_key_prefix="people:",
        )
        with patch("gateway.kv.redis.Redis.from_url", return_value=fake) as from_url:
            app = create_app(settings)
            client = TestClient(app)
            response = client.put(
                "/users/u1",
                json={"email": "a@x.com"},
                headers={"X-Custom-Auth-Key": USER_DB_AUTH},
            )
            client.get("/users/u1", headers={"X-Custom-Auth-Key": USER_DB_AUTH})

        self.assertEqual(response.status_code, 201)
        from_url.assert_called_once_with("redis://profiles.internal:6390/0")
        self.assertIsInstance(app.state.kv_client, RedisKeyValueClient)
        self.assertIsNotNone(fake.get("people:u1"))

    def test_in_memory_backends_are_per_app(self):
        headers = {"X-Custom-Auth-Key": USER_DB_AUTH}
        first = create_app(_settings())
        second = create_app(_settings())
        TestClient(first).put("/users/u1", json={}, headers=headers)

        self.assertEqual(TestClient(second).get("/users/u1", headers=headers).status_code, 404)
        self.assertIsInstance(first.state.kv_client, InMemoryKeyValueClient)
        self.assertIsNot(first.state.kv_client, second.state.kv_client)

    def test_s3_buckets_follow_injected_settings(self):
        settings = _settings(
            use_in_memory_backends=False,
            s3_bucket="case-docs",
            s3_audit_bucket="case-audit",
            s3_endpoint="https://account.r2.example.com",
        )
        s3 = MagicMock()
        s3.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
        headers = {"X-Custom-Auth-Key": R2_KEY_SECRET}
        with patch("gateway.storage.boto3.client", return_value=s3):
            app = create_app(settings)
            client = TestClient(app)
            documents = client.get("/data/u1/data.json", headers=headers)
            self.assertEqual(documents.json(), [])
            self.assertEqual(s3.get_object.call_args.kwargs["Bucket"], "case-docs")

            audit = client.get("/audit/?userId=u1", headers=headers)
            self.assertEqual(audit.json(), {"entries": [], "total": 0})
            self.assertEqual(s3.get_object.call_args.kwargs["Bucket"], "case-audit")

        self.assertIsInstance(app.state.storage_client, S3StorageClient)


class SettingsTests(unittest.TestCase):
    def test_reads_raw_and_prefixed_environment_names(self):
        env = {
            "KEYS_AUTH": "from-raw",
            "GATEWAY_USER_DB_AUTH": "from-prefixed",
            "ACCOUNT_ID": "acct-1",
            "GATEWAY_UPSTREAM_TIMEOUT_SECONDS": "2.5",
        }
        with patch.dict(os.environ, env, clear=False):
            settings = Settings(_env_file=None)
        self.assertEqual(settings.keys_auth, "from-raw")
        self.assertEqual(settings.user_db_auth, "from-prefixed")
        self.assertEqual(settings.images_account_id, "acct-1")
        self.assertEqual(settings.upstream_timeout_seconds, 2.5)

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)
        self.assertIsNone(settings.upstream_timeout_seconds)
        self.assertEqual(settings.cors_allow_origin, "*")
        self.assertEqual(settings.profile_key_prefix, "users:")


if __name__ == "__main__":
    unittest.main()
