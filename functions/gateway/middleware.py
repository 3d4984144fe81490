"""
Edge middleware: per-component CORS preflight and shared-secret header checks.

Each component is mounted under its own prefix and described by a
``GatewayPolicy``. Preflight requests are answered here, and requests to
header-protected prefixes are rejected here, before FastAPI routes the method
or reads the body.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from gateway.config import Settings
from gateway.keys import constant_time_equals

logger = logging.getLogger(__name__)

AUTH_HEADER = "X-Custom-Auth-Key"

KEYS_PREFIX = "/keys"
USERS_PREFIX = "/users"
DATA_PREFIX = "/data"
IMAGES_PREFIX = "/images"
TURNSTILE_PREFIX = "/turnstile"
AUDIT_PREFIX = "/audit"


@dataclass(frozen=True)
class GatewayPolicy:
    prefix: str
    allow_methods: str
    allow_headers: str
    plain_text: bool = False
    requires_header: bool = False
    # An unset secret rejects every request to a header-protected prefix.
    header_secret: Optional[str] = None

    def matches(self, path: str) -> bool:
        return path == self.prefix or path.startswith(self.prefix + "/")


def build_policies(settings: Settings) -> tuple[GatewayPolicy, ...]:
    return (
        GatewayPolicy(
            prefix=KEYS_PREFIX,
            allow_methods="GET, POST, OPTIONS",
            allow_headers=f"Content-Type, {AUTH_HEADER}",
            plain_text=True,
            header_secret=settings.keys_auth,
            requires_header=True,
        ),
        GatewayPolicy(
            prefix=USERS_PREFIX,
            allow_methods="GET, PUT, DELETE, OPTIONS",
            allow_headers=f"Content-Type, {AUTH_HEADER}",
            header_secret=settings.user_db_auth,
            requires_header=True,
        ),
        GatewayPolicy(
            prefix=DATA_PREFIX,
            allow_methods="GET, HEAD, PUT, DELETE, OPTIONS",
            allow_headers=f"Content-Type, {AUTH_HEADER}",
            header_secret=settings.r2_key_secret,
            requires_header=True,
        ),
        GatewayPolicy(
            prefix=IMAGES_PREFIX,
            allow_methods="GET, POST, DELETE, OPTIONS",
            allow_headers=f"Content-Type, Authorization, {AUTH_HEADER}",
        ),
        GatewayPolicy(
            prefix=TURNSTILE_PREFIX,
            allow_methods="POST, OPTIONS",
            allow_headers="Content-Type",
        ),
        GatewayPolicy(
            prefix=AUDIT_PREFIX,
            allow_methods="GET, POST, OPTIONS",
            allow_headers=f"Content-Type, {AUTH_HEADER}",
            header_secret=settings.r2_key_secret,
            requires_header=True,
        ),
    )


def resolve_policy(
    policies: Sequence[GatewayPolicy], path: str
) -> Optional[GatewayPolicy]:
    for policy in policies:
        if policy.matches(path):
            return policy
    return None


def error_response(
    policy: Optional[GatewayPolicy], message: str, status_code: int
) -> Response:
    if policy is not None and policy.plain_text:
        return PlainTextResponse(message, status_code=status_code)
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


class GatewayEdgeMiddleware(BaseHTTPMiddleware):
    """Answers preflight, enforces the shared-secret header, adds CORS headers."""

    def __init__(self, app, *, settings: Settings):
        super().__init__(app)
        self.allow_origin = settings.cors_allow_origin
        self.policies = build_policies(settings)

    def _cors_headers(self, policy: GatewayPolicy) -> dict[str, str]:
        return {
            "Access-Control-Allow-Origin": self.allow_origin,
            "Access-Control-Allow-Methods": policy.allow_methods,
            "Access-Control-Allow-Headers": policy.allow_headers,
        }

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        policy = resolve_policy(self.policies, request.url.path)
        if policy is None:
            return await call_next(request)

        if request.method == "OPTIONS":
            return Response(status_code=204, headers=self._cors_headers(policy))

        if policy.requires_header and not constant_time_equals(
            request.headers.get(AUTH_HEADER), policy.header_secret
        ):
            logger.warning(
                "Rejected %s %s: missing or invalid %s",
                request.method,
                request.url.path,
                AUTH_HEADER,
            )
            response = error_response(policy, "Forbidden", 403)
        else:
            try:
                response = await call_next(request)
            except Exception:
                # Unhandled errors under a prefix still carry CORS headers.
                logger.exception(
                    "Unhandled error on %s %s", request.method, request.url.path
                )
                response = error_response(policy, "Internal Server Error", 500)

        response.headers.update(self._cors_headers(policy))
        return response
