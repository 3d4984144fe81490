import unittest

from fastapi.testclient import TestClient

from gateway.app import create_app
from gateway.config import Settings
from gateway.errors import BadRequest, NotFound
from gateway.keys import SecretBroker

KEYS_AUTH = "keys-auth-value"
AUTH_PASSWORD = "open-sesame"


def _settings(**overrides) -> Settings:
    values = dict(
        keys_auth=KEYS_AUTH,
        user_db_auth="user-db-auth-value",
        r2_key_secret="r2-key-value",
        account_hash="account-hash-value",
        images_api_token=None,
        auth_password=AUTH_PASSWORD,
        use_in_memory_backends=True,
    )
    values.update(overrides)
    return Settings(**values)


class SecretBrokerTests(unittest.TestCase):
    def setUp(self):
        self.broker = SecretBroker.from_settings(_settings())

    def test_returns_exact_provisioned_values(self):
        self.assertEqual(self.broker.get_secret("KEYS_AUTH"), KEYS_AUTH)
        self.assertEqual(self.broker.get_secret("R2_KEY_SECRET"), "r2-key-value")
        self.assertEqual(self.broker.get_secret("ACCOUNT_HASH"), "account-hash-value")

    def test_unknown_and_unprovisioned_names_are_not_found(self):
        for name in ("AUTH_PASSWORD", "HMAC_KEY", "IMAGES_API_TOKEN", "keys_auth"):
            with self.assertRaises(NotFound):
                self.broker.get_secret(name)

    def test_empty_name_is_bad_request(self):
        with self.assertRaises(BadRequest):
            self.broker.get_secret("")

    def test_rejects_names_outside_allow_list(self):
        with self.assertRaises(ValueError):
            SecretBroker({"KEYS_AUTH": "x", "DATABASE_URL": "y"}, access_password=None)

    def test_verify_password(self):
        self.assertTrue(self.broker.verify_password(AUTH_PASSWORD))
        self.assertFalse(self.broker.verify_password("open-sesame "))
        self.assertFalse(self.broker.verify_password(""))
        self.assertFalse(self.broker.verify_password(None))
        self.assertFalse(self.broker.verify_password(123))

    def test_verify_password_without_configured_password(self):
        broker = SecretBroker.from_settings(_settings(auth_password=None))
        self.assertFalse(broker.verify_password(""))
        self.assertFalse(broker.verify_password("anything"))

    def test_not_found_message_does_not_echo_values(self):
        with self.assertRaises(NotFound) as ctx:
            self.broker.get_secret("NOPE")
        self.assertNotIn(KEYS_AUTH, str(ctx.exception))


class KeysApiTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app(_settings()))
        self.headers = {"X-Custom-Auth-Key": KEYS_AUTH}

    def test_get_secret_returns_plain_text(self):
        response = self.client.get("/keys/ACCOUNT_HASH", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, "account-hash-value")
        self.assertTrue(response.headers["content-type"].startswith("text/plain"))

    def test_unknown_secret_is_404(self):
        response = self.client.get("/keys/NOT_A_SECRET", headers=self.headers)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.text, "Key not found")

    def test_missing_name_is_400(self):
        response = self.client.get("/keys/", headers=self.headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.text, "Key name required")

    def test_wrong_header_is_rejected_before_name_lookup(self):
        for headers in ({}, {"X-Custom-Auth-Key": "wrong"}):
            for name in ("ACCOUNT_HASH", "NOT_A_SECRET", ""):
                response = self.client.get(f"/keys/{name}", headers=headers)
                self.assertEqual(response.status_code, 403)
                self.assertEqual(response.text, "Forbidden")

    def test_verify_auth_password(self):
        ok = self.client.post(
            "/keys/verify-auth-password",
            json={"password": AUTH_PASSWORD},
            headers=self.headers,
        )
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json(), {"success": True})

        for body in ({"password": "guess"}, {"password": ""}, {}):
            response = self.client.post(
                "/keys/verify-auth-password", json=body, headers=self.headers
            )
            self.assertEqual(response.status_code, 200)
            self.assertFalse(response.json()["success"])
            self.assertNotIn(AUTH_PASSWORD, response.text)

    def test_non_string_password_is_a_mismatch(self):
        for password in (123, ["open-sesame"], {"value": AUTH_PASSWORD}, True):
            response = self.client.post(
                "/keys/verify-auth-password",
                json={"password": password},
                headers=self.headers,
            )
            self.assertEqual(response.status_code, 200)
            self.assertFalse(response.json()["success"])

    def test_verify_auth_password_without_body(self):
        response = self.client.post("/keys/verify-auth-password", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["success"])

    def test_verify_auth_password_requires_header(self):
        response = self.client.post(
            "/keys/verify-auth-password", json={"password": AUTH_PASSWORD}
        )
        self.assertEqual(response.status_code, 403)

    def test_http_and_in_process_paths_agree(self):
        broker = SecretBroker.from_settings(_settings())
        for name in ("KEYS_AUTH", "USER_DB_AUTH", "R2_KEY_SECRET", "ACCOUNT_HASH"):
            response = self.client.get(f"/keys/{name}", headers=self.headers)
            self.assertEqual(response.text, broker.get_secret(name))


if __name__ == "__main__":
    unittest.main()
