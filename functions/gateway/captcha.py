"""
CAPTCHA verification relay for public form submissions.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

from gateway.errors import BadRequest, UpstreamFailure

logger = logging.getLogger(__name__)


class CaptchaVerifier:
    def __init__(self, verify_url: str, secret: Optional[str], timeout: Optional[float] = None):
        self.verify_url = verify_url
        self.secret = secret
        self.timeout = timeout

    def verify(self, token: Optional[str], remote_ip: str) -> bool:
        """Relays the token upstream and returns the upstream verdict.

        Raises:
            BadRequest: If the token is empty.
            UpstreamFailure: On network errors or a non-JSON upstream reply.
        """
        if not token:
            raise BadRequest("Token missing")
        if not self.secret:
            logger.error("CAPTCHA secret is not configured")
            raise UpstreamFailure()

        payload = {"secret": self.secret, "response": token, "remoteip": remote_ip}
        try:
            response = requests.post(self.verify_url, json=payload, timeout=self.timeout)
            outcome = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.exception("CAPTCHA verification request failed: %s", e)
            raise UpstreamFailure() from e

        if not isinstance(outcome, dict):
            logger.error("Unexpected CAPTCHA verification payload: %r", outcome)
            raise UpstreamFailure()
        if not outcome.get("success"):
            logger.info(
                "CAPTCHA rejected from %s: %s", remote_ip, outcome.get("error-codes")
            )
            return False
        return True
