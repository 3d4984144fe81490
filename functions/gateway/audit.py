"""
Audit store: per-user, per-day audit trails kept as JSON arrays at
``audit-trails/{userId}/{YYYY-MM-DD}.json`` in object storage.

Appends are read-modify-write on the day's file with no concurrency token, so
two concurrent appends for the same user and day can lose one entry.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterator, Optional

from gateway.errors import BadRequest, UpstreamFailure
from gateway.storage import StorageClient

logger = logging.getLogger(__name__)

AUDIT_ROOT = "audit-trails"
MAX_RANGE_DAYS = 366
REQUIRED_FIELDS = ("timestamp", "userId", "action")
INVALID_ENTRY = (
    "Invalid audit entry structure. Required fields: timestamp, userId, action"
)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def audit_trail_path(user_id: str, day: date) -> str:
    return f"{AUDIT_ROOT}/{user_id}/{day.isoformat()}.json"


def is_valid_entry(entry: Any) -> bool:
    return isinstance(entry, dict) and all(
        isinstance(entry.get(name), str) for name in REQUIRED_FIELDS
    )


def _parse_day(value: str) -> date:
    """Accepts a bare date or a full ISO timestamp; timestamps count in UTC."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise BadRequest("Invalid date") from e
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def _entry_time(entry: dict) -> datetime:
    try:
        parsed = datetime.fromisoformat(str(entry.get("timestamp")).replace("Z", "+00:00"))
    except ValueError:
        return _OLDEST
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@contextmanager
def _store_call(action: str, path: str) -> Iterator[None]:
    try:
        yield
    except Exception as exc:
        logger.exception("Audit store failed to %s %s", action, path)
        raise UpstreamFailure() from exc


class AuditStore:
    def __init__(
        self, storage: StorageClient, clock: Callable[[], datetime] = _utcnow
    ):
        self.storage = storage
        self.clock = clock

    def _read(self, path: str) -> list[dict]:
        body = self.storage.get_bytes(path)
        if body is None:
            return []
        entries = json.loads(body)
        if not isinstance(entries, list):
            raise ValueError(f"audit trail {path} is not a JSON array")
        return entries

    def append(self, user_id: Optional[str], entry: Any) -> tuple[int, str]:
        """Adds an entry to today's trail. Returns the new entry count and file."""
        if not user_id:
            raise BadRequest("userId parameter is required")
        if not is_valid_entry(entry):
            raise BadRequest(INVALID_ENTRY)

        path = audit_trail_path(user_id, self.clock().astimezone(timezone.utc).date())
        with _store_call("append to", path):
            entries = self._read(path)
            entries.append(entry)
            self.storage.put_bytes(
                path, json.dumps(entries).encode("utf-8"), "application/json"
            )
        return len(entries), path

    def entries(
        self,
        user_id: Optional[str],
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[dict]:
        """Entries newest first, for an inclusive date range or for today.

        The range applies only when both ends are given.
        """
        if not user_id:
            raise BadRequest("userId parameter is required")

        if start_date and end_date:
            start, end = _parse_day(start_date), _parse_day(end_date)
            if (end - start).days >= MAX_RANGE_DAYS:
                raise BadRequest(f"Date range is limited to {MAX_RANGE_DAYS} days")
            days = [
                start + timedelta(days=offset)
                for offset in range((end - start).days + 1)
            ]
        else:
            days = [self.clock().astimezone(timezone.utc).date()]

        collected: list[dict] = []
        for day in days:
            path = audit_trail_path(user_id, day)
            with _store_call("read", path):
                collected.extend(self._read(path))
        return sorted(collected, key=_entry_time, reverse=True)
