"""
Dependency wiring for the FastAPI app.

Backend clients are built from the settings injected into the app and cached
on ``app.state``, so each app owns its own clients; request handlers never
share any other state. Tests swap any of these through
``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import Callable, Optional, TypeVar

from fastapi import Depends, Request

from gateway.audit import AuditStore
from gateway.captcha import CaptchaVerifier
from gateway.config import Settings, get_settings
from gateway.documents import DocumentStore
from gateway.keys import SecretBroker
from gateway.kv import InMemoryKeyValueClient, KeyValueClient, RedisKeyValueClient
from gateway.media import ImagesClient
from gateway.profiles import ProfileStore
from gateway.storage import InMemoryStorageClient, S3StorageClient, StorageClient

T = TypeVar("T")


def build_kv_client(settings: Settings) -> KeyValueClient:
    if settings.use_in_memory_backends or not settings.redis_url:
        return InMemoryKeyValueClient()
    return RedisKeyValueClient(
        url=settings.redis_url,
        key_prefix=settings.profile_key_prefix,
    )


def build_storage_client(settings: Settings, bucket: Optional[str]) -> StorageClient:
    if settings.use_in_memory_backends or not bucket:
        return InMemoryStorageClient()
    return S3StorageClient(
        bucket=bucket,
        region=settings.s3_region or "",
        endpoint=settings.s3_endpoint or "",
        access_key_id=settings.aws_access_key_id or "",
        secret_access_key=settings.aws_secret_access_key or "",
    )


def _app_cached(request: Request, name: str, factory: Callable[[], T]) -> T:
    state = request.app.state
    client = getattr(state, name, None)
    if client is None:
        client = factory()
        setattr(state, name, client)
    return client


def get_kv_client(
    request: Request, settings: Settings = Depends(get_settings)
) -> KeyValueClient:
    return _app_cached(request, "kv_client", lambda: build_kv_client(settings))


def get_storage_client(
    request: Request, settings: Settings = Depends(get_settings)
) -> StorageClient:
    return _app_cached(
        request,
        "storage_client",
        lambda: build_storage_client(settings, settings.s3_bucket),
    )


def get_audit_storage_client(
    request: Request,
    settings: Settings = Depends(get_settings),
    document_storage: StorageClient = Depends(get_storage_client),
) -> StorageClient:
    # Without a dedicated audit bucket, audit trails share the document bucket.
    if not settings.s3_audit_bucket:
        return document_storage
    return _app_cached(
        request,
        "audit_storage_client",
        lambda: build_storage_client(settings, settings.s3_audit_bucket),
    )


def get_secret_broker(settings: Settings = Depends(get_settings)) -> SecretBroker:
    return SecretBroker.from_settings(settings)


def get_profile_store(kv: KeyValueClient = Depends(get_kv_client)) -> ProfileStore:
    return ProfileStore(kv)


def get_document_store(
    storage: StorageClient = Depends(get_storage_client),
) -> DocumentStore:
    return DocumentStore(storage)


def get_audit_store(
    storage: StorageClient = Depends(get_audit_storage_client),
) -> AuditStore:
    return AuditStore(storage)


def get_images_client(settings: Settings = Depends(get_settings)) -> ImagesClient:
    return ImagesClient(
        api_base=settings.images_api_base,
        account_id=settings.images_account_id or "",
        api_token=settings.images_api_token or "",
        timeout=settings.upstream_timeout_seconds,
    )


def get_captcha_verifier(settings: Settings = Depends(get_settings)) -> CaptchaVerifier:
    return CaptchaVerifier(
        verify_url=settings.turnstile_verify_url,
        secret=settings.cft_secret_key,
        timeout=settings.upstream_timeout_seconds,
    )
