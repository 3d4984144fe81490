"""
Secret broker: allow-listed lookup of deployment secrets and access-password
verification.

The same ``SecretBroker`` instance backs the ``/keys`` routes and any
in-process caller, so both paths share one set of semantics.
"""

from __future__ import annotations

import hmac
from types import MappingProxyType
from typing import Any, Mapping, Optional

from gateway.config import Settings
from gateway.errors import BadRequest, NotFound

KNOWN_SECRET_NAMES = frozenset(
    {
        "R2_KEY_SECRET",
        "ACCOUNT_HASH",
        "IMAGES_API_TOKEN",
        "USER_DB_AUTH",
        "KEYS_AUTH",
    }
)


def constant_time_equals(candidate: Optional[str], expected: Optional[str]) -> bool:
    """Compares two strings without short-circuiting on the first difference.

    An unset ``expected`` value never matches anything.
    """
    if not candidate or not expected:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


class SecretBroker:
    def __init__(
        self, secrets: Mapping[str, Optional[str]], access_password: Optional[str]
    ):
        unknown = set(secrets) - KNOWN_SECRET_NAMES
        if unknown:
            raise ValueError(f"Unknown secret names: {sorted(unknown)}")
        # Names that are allow-listed but not provisioned are treated as absent.
        self._secrets = MappingProxyType(
            {name: value for name, value in secrets.items() if value}
        )
        self._access_password = access_password

    @classmethod
    def from_settings(cls, settings: Settings) -> "SecretBroker":
        return cls(
            {
                "R2_KEY_SECRET": settings.r2_key_secret,
                "ACCOUNT_HASH": settings.account_hash,
                "IMAGES_API_TOKEN": settings.images_api_token,
                "USER_DB_AUTH": settings.user_db_auth,
                "KEYS_AUTH": settings.keys_auth,
            },
            access_password=settings.auth_password,
        )

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._secrets)

    def get_secret(self, name: str) -> str:
        if not name:
            raise BadRequest("Key name required")
        try:
            return self._secrets[name]
        except KeyError:
            raise NotFound("Key not found") from None

    def verify_password(self, candidate: Any) -> bool:
        if not isinstance(candidate, str):
            return False
        return constant_time_equals(candidate, self._access_password)
