"""
Media gateway: proxies uploads/deletes to the image CDN and mints signed,
time-limited delivery URLs.

Signature format (checked by the CDN, not here):

    sig = hex(HMAC-SHA256(key, path + "?" + query))

where ``query`` is the URL's own query string with ``exp`` set. ``sig`` is
appended after signing.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

from gateway.errors import BadRequest, UpstreamFailure

logger = logging.getLogger(__name__)

SIGNED_URL_TTL_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class SignedUrl:
    url: str
    path: str
    exp: int
    sig: str


def compute_signature(key: str, path: str, query: str) -> str:
    message = f"{path}?{query}".encode("utf-8")
    return hmac.new(key.encode("utf-8"), message, hashlib.sha256).hexdigest()


def resolve_delivery_url(asset_path: str, delivery_base: str) -> str:
    """Turns the requested asset path into an absolute delivery URL.

    Accepts a full URL, including one whose ``//`` was collapsed to ``/`` by
    path normalization, or a path relative to ``delivery_base``.
    """
    asset_path = asset_path.lstrip("/")
    if not asset_path:
        raise BadRequest("Image path is required")
    for scheme in ("https:/", "http:/"):
        if asset_path.startswith(scheme):
            rest = asset_path[len(scheme):].lstrip("/")
            return f"{scheme}/{rest}"
    return f"{delivery_base.rstrip('/')}/{asset_path}"


def mint_signed_url(
    url: str, key: str, *, now: Optional[float] = None
) -> SignedUrl:
    if not key:
        logger.error("URL signing key is not configured")
        raise UpstreamFailure()
    issued_at = int(time.time() if now is None else now)
    exp = issued_at + SIGNED_URL_TTL_SECONDS

    parts = urlsplit(url)
    params = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
              if k not in ("exp", "sig")]
    params.append(("exp", str(exp)))
    query = urlencode(params)
    sig = compute_signature(key, parts.path, query)

    signed_query = urlencode(params + [("sig", sig)])
    signed = urlunsplit((parts.scheme, parts.netloc, parts.path, signed_query, ""))
    return SignedUrl(url=signed, path=parts.path, exp=exp, sig=sig)


@dataclass(frozen=True)
class CdnResponse:
    status_code: int
    payload: Any


class ImagesClient:
    """Thin client for the CDN's images REST API."""

    def __init__(
        self,
        api_base: str,
        account_id: str,
        api_token: str,
        timeout: Optional[float] = None,
    ):
        self.endpoint = f"{api_base.rstrip('/')}/{account_id}/images/v1"
        self.api_token = api_token
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_token}"}

    def _relay(self, method: str, url: str, **kwargs) -> CdnResponse:
        try:
            response = requests.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.exception("Image CDN %s %s failed: %s", method, url, e)
            raise UpstreamFailure() from e
        return CdnResponse(status_code=response.status_code, payload=payload)

    def upload(
        self, files: dict[str, tuple[str, bytes, str]], fields: dict[str, str]
    ) -> CdnResponse:
        # Every asset must only ever be served through signed URLs.
        data = dict(fields)
        data["requireSignedURLs"] = "true"
        return self._relay("POST", self.endpoint, files=files, data=data)

    def delete(self, image_id: str) -> CdnResponse:
        if not image_id:
            raise BadRequest("Image ID is required")
        return self._relay("DELETE", f"{self.endpoint}/{image_id}")
