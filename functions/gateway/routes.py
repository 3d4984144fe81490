"""
HTTP routes for the gateway components.

Shared-secret checks for ``/keys``, ``/users``, ``/data`` and ``/audit``
happen in ``GatewayEdgeMiddleware`` before any of these handlers run.
"""

from __future__ import annotations

import logging
from email.utils import format_datetime
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from gateway.audit import AuditStore
from gateway.captcha import CaptchaVerifier
from gateway.config import Settings, get_settings
from gateway.dependencies import (
    get_audit_store,
    get_captcha_verifier,
    get_document_store,
    get_images_client,
    get_profile_store,
    get_secret_broker,
)
from gateway.documents import DocumentStore
from gateway.errors import BadRequest, Unauthorized
from gateway.keys import SecretBroker, constant_time_equals
from gateway.media import ImagesClient, mint_signed_url, resolve_delivery_url
from gateway.middleware import (
    AUDIT_PREFIX,
    DATA_PREFIX,
    IMAGES_PREFIX,
    KEYS_PREFIX,
    TURNSTILE_PREFIX,
    USERS_PREFIX,
)
from gateway.profiles import ProfileStore
from gateway.schemas import (
    AddCasesRequest,
    AuditAppendResponse,
    AuditEntriesResponse,
    CaptchaRequest,
    CaseListResponse,
    DeleteCasesRequest,
    PasswordRequest,
    ProfileUpdate,
    SuccessResponse,
    VerificationResponse,
)

logger = logging.getLogger(__name__)

keys_router = APIRouter(prefix=KEYS_PREFIX, tags=["keys"])
users_router = APIRouter(prefix=USERS_PREFIX, tags=["users"])
data_router = APIRouter(prefix=DATA_PREFIX, tags=["data"])
images_router = APIRouter(prefix=IMAGES_PREFIX, tags=["images"])
turnstile_router = APIRouter(prefix=TURNSTILE_PREFIX, tags=["turnstile"])
audit_router = APIRouter(prefix=AUDIT_PREFIX, tags=["audit"])

routers = (
    keys_router,
    users_router,
    data_router,
    images_router,
    turnstile_router,
    audit_router,
)

INCORRECT_PASSWORD = (
    "Incorrect access password. Please contact support if you need access."
)


# ---- Secret broker ----


@keys_router.post(
    "/verify-auth-password",
    response_model=VerificationResponse,
    response_model_exclude_none=True,
)
def verify_auth_password(
    payload: Optional[PasswordRequest] = None,
    broker: SecretBroker = Depends(get_secret_broker),
):
    candidate = payload.password if payload else None
    if broker.verify_password(candidate):
        return VerificationResponse(success=True)
    return VerificationResponse(success=False, error=INCORRECT_PASSWORD)


@keys_router.get("", response_class=PlainTextResponse)
@keys_router.get("/", response_class=PlainTextResponse)
def missing_secret_name():
    raise BadRequest("Key name required")


@keys_router.get("/{name}", response_class=PlainTextResponse)
def get_secret(name: str, broker: SecretBroker = Depends(get_secret_broker)):
    return PlainTextResponse(broker.get_secret(name))


# ---- Profile store ----


@users_router.get("/{uid}")
def get_user(uid: str, store: ProfileStore = Depends(get_profile_store)):
    return store.get(uid).to_wire()


@users_router.put("/{uid}")
def put_user(
    uid: str,
    payload: ProfileUpdate,
    response: Response,
    store: ProfileStore = Depends(get_profile_store),
):
    profile, created = store.put(uid, payload)
    response.status_code = 201 if created else 200
    return profile.to_wire()


@users_router.delete("/{uid}", response_model=SuccessResponse)
def delete_user(uid: str, store: ProfileStore = Depends(get_profile_store)):
    store.delete(uid)
    return SuccessResponse()


@users_router.get("/{uid}/cases", response_model=CaseListResponse)
def list_user_cases(uid: str, store: ProfileStore = Depends(get_profile_store)):
    return CaseListResponse(cases=store.list_case_numbers(uid))


@users_router.put("/{uid}/cases")
def add_user_cases(
    uid: str,
    payload: AddCasesRequest,
    store: ProfileStore = Depends(get_profile_store),
):
    return store.add_cases(uid, payload.cases).to_wire()


@users_router.delete("/{uid}/cases")
def delete_user_cases(
    uid: str,
    payload: DeleteCasesRequest,
    store: ProfileStore = Depends(get_profile_store),
):
    return store.remove_cases(uid, payload.cases_to_delete).to_wire()


# ---- Document store ----


@data_router.head("/{path:path}")
def head_document(path: str, store: DocumentStore = Depends(get_document_store)):
    metadata = store.head(path)
    return Response(
        status_code=200,
        media_type="application/json",
        headers={
            "Content-Length": str(metadata.size),
            "Last-Modified": format_datetime(metadata.last_modified, usegmt=True),
            "ETag": f'"{metadata.etag}"',
        },
    )


@data_router.get("/{path:path}")
def get_document(path: str, store: DocumentStore = Depends(get_document_store)):
    return JSONResponse(store.get(path))


@data_router.put("/{path:path}", response_model=SuccessResponse)
def put_document(
    path: str,
    value: Any = Body(...),
    store: DocumentStore = Depends(get_document_store),
):
    store.put(path, value)
    return SuccessResponse()


@data_router.delete("/{path:path}", response_model=SuccessResponse)
def delete_document(path: str, store: DocumentStore = Depends(get_document_store)):
    store.delete(path)
    return SuccessResponse()


# ---- Media gateway ----


def require_images_token(
    request: Request, settings: Settings = Depends(get_settings)
) -> None:
    header = request.headers.get("Authorization") or ""
    token = header.removeprefix("Bearer ") if header.startswith("Bearer ") else None
    if not constant_time_equals(token, settings.images_api_token):
        logger.warning(
            "Rejected %s %s: invalid bearer token", request.method, request.url.path
        )
        raise Unauthorized("Unauthorized")


@images_router.post("", dependencies=[Depends(require_images_token)])
@images_router.post("/", dependencies=[Depends(require_images_token)])
async def upload_image(
    request: Request, client: ImagesClient = Depends(get_images_client)
):
    try:
        form = await request.form()
    except Exception as e:
        logger.warning("Could not parse upload form: %s", e)
        raise BadRequest("Invalid multipart form") from e

    files: dict[str, tuple[str, bytes, str]] = {}
    fields: dict[str, str] = {}
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            content = await value.read()
            files[key] = (
                value.filename or key,
                content,
                value.content_type or "application/octet-stream",
            )
        else:
            fields[key] = value

    result = await run_in_threadpool(client.upload, files, fields)
    return JSONResponse(result.payload, status_code=result.status_code)


@images_router.delete("/", dependencies=[Depends(require_images_token)])
def delete_image_without_id():
    raise BadRequest("Image ID is required")


@images_router.delete(
    "/{asset_path:path}", dependencies=[Depends(require_images_token)]
)
def delete_image(asset_path: str, client: ImagesClient = Depends(get_images_client)):
    # The image id is the last path segment.
    result = client.delete(asset_path.rsplit("/", 1)[-1])
    return JSONResponse(result.payload, status_code=result.status_code)


@images_router.get("/{asset_path:path}", response_class=PlainTextResponse)
def serve_image(
    asset_path: str, request: Request, settings: Settings = Depends(get_settings)
):
    url = resolve_delivery_url(asset_path, settings.image_delivery_base)
    if request.url.query:
        url = f"{url}?{request.url.query}"
    signed = mint_signed_url(url, settings.hmac_key or "")
    return PlainTextResponse(signed.url)


# ---- CAPTCHA verifier ----


@turnstile_router.post(
    "", response_model=VerificationResponse, response_model_exclude_none=True
)
@turnstile_router.post(
    "/", response_model=VerificationResponse, response_model_exclude_none=True
)
def verify_turnstile(
    payload: CaptchaRequest,
    request: Request,
    verifier: CaptchaVerifier = Depends(get_captcha_verifier),
):
    remote_ip = request.headers.get("CF-Connecting-IP") or (
        request.client.host if request.client else ""
    )
    if verifier.verify(payload.token, remote_ip):
        return VerificationResponse(success=True)
    return JSONResponse(
        {"success": False, "error": "Verification failed"}, status_code=400
    )


# ---- Audit trail ----


@audit_router.post("", response_model=AuditAppendResponse)
@audit_router.post("/", response_model=AuditAppendResponse)
def append_audit_entry(
    entry: Any = Body(None),
    user_id: Optional[str] = Query(None, alias="userId"),
    store: AuditStore = Depends(get_audit_store),
):
    count, filename = store.append(user_id, entry)
    return AuditAppendResponse(entry_count=count, filename=filename)


@audit_router.get("", response_model=AuditEntriesResponse)
@audit_router.get("/", response_model=AuditEntriesResponse)
def list_audit_entries(
    user_id: Optional[str] = Query(None, alias="userId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    store: AuditStore = Depends(get_audit_store),
):
    entries = store.entries(user_id, start_date, end_date)
    return AuditEntriesResponse(entries=entries, total=len(entries))
