"""
Document store: replace-semantics JSON blobs addressed by path, e.g.
``{uid}/data.json`` or ``{uid}/{caseNumber}/{itemId}/data.json``.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator

from gateway.errors import BadRequest, NotFound, UpstreamFailure
from gateway.storage import ObjectMetadata, StorageClient

logger = logging.getLogger(__name__)

DOCUMENT_EXTENSION = ".json"
DEFAULT_DOCUMENT = "data.json"


def normalize_document_path(path: str) -> str:
    path = path.lstrip("/") or DEFAULT_DOCUMENT
    if not path.endswith(DOCUMENT_EXTENSION):
        raise BadRequest("Invalid file type. Only JSON files are allowed.")
    return path


@contextmanager
def _store_call(action: str, path: str) -> Iterator[None]:
    try:
        yield
    except Exception as exc:
        logger.exception("Document store failed to %s %s", action, path)
        raise UpstreamFailure() from exc


class DocumentStore:
    def __init__(self, storage: StorageClient):
        self.storage = storage

    def get(self, path: str) -> Any:
        """Returns the stored value, or an empty list when nothing was written yet."""
        path = normalize_document_path(path)
        with _store_call("read", path):
            body = self.storage.get_bytes(path)
            if body is None:
                return []
            return json.loads(body)

    def head(self, path: str) -> ObjectMetadata:
        path = normalize_document_path(path)
        with _store_call("stat", path):
            metadata = self.storage.head(path)
        if metadata is None:
            raise NotFound("File not found")
        return metadata

    def put(self, path: str, value: Any) -> None:
        path = normalize_document_path(path)
        try:
            body = json.dumps(value).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise BadRequest("Invalid JSON body") from e
        with _store_call("write", path):
            self.storage.put_bytes(path, body, "application/json")

    def delete(self, path: str) -> None:
        path = normalize_document_path(path)
        with _store_call("stat", path):
            exists = self.storage.head(path) is not None
        if not exists:
            raise NotFound("File not found")
        with _store_call("delete", path):
            self.storage.delete(path)
