"""
FastAPI application entry point for the gateway.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from gateway.config import Settings, get_settings
from gateway.errors import GatewayError
from gateway.middleware import (
    GatewayEdgeMiddleware,
    build_policies,
    error_response,
    resolve_policy,
)
from gateway.routes import routers

logger = logging.getLogger(__name__)


def _policy_for(request: Request):
    return resolve_policy(request.app.state.policies, request.url.path)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(GatewayError)
    async def handle_gateway_error(request: Request, exc: GatewayError):
        return error_response(_policy_for(request), exc.message, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.errors())
        return error_response(_policy_for(request), "Invalid request body", 400)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        response = error_response(
            _policy_for(request), str(exc.detail), exc.status_code
        )
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(_policy_for(request), "Internal Server Error", 500)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(title="Case Gateway", version="0.1.0")
    app.state.policies = build_policies(settings)
    app.dependency_overrides[get_settings] = lambda: settings
    app.add_middleware(GatewayEdgeMiddleware, settings=settings)
    register_exception_handlers(app)
    for router in routers:
        app.include_router(router)
    return app


app = create_app()
