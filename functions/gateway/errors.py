"""
Error taxonomy shared by every gateway component.

Handlers raise these; the exception handlers registered in ``gateway.app``
turn them into responses. Anything raised by a backing store or a third-party
API is converted to ``UpstreamFailure`` at the component boundary so raw
upstream errors never reach the caller.
"""

from __future__ import annotations


class GatewayError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(GatewayError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(GatewayError):
    status_code = 404
    default_message = "Not found"


class BadRequest(GatewayError):
    status_code = 400
    default_message = "Bad request"


class UpstreamFailure(GatewayError):
    status_code = 500
    default_message = "Internal Server Error"
