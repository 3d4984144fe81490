"""
Profile store: one JSON record per user uid in a key-value backend.

Writes are read-modify-write without a concurrency token. Two concurrent
updates to the same uid race and the later write replaces the whole record,
so a concurrent partial update can be lost.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Iterator, Optional

from gateway.errors import NotFound, UpstreamFailure
from gateway.kv import KeyValueClient
from gateway.schemas import CaseRef, ProfileUpdate, UserProfile
from shared.case_sort import sort_case_numbers

logger = logging.getLogger(__name__)

_MERGE_FIELDS = (
    "email",
    "first_name",
    "last_name",
    "company",
    "permitted",
    "read_only_cases",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds").replace(
        "+00:00", "Z"
    )


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@contextmanager
def _store_call(action: str, uid: str) -> Iterator[None]:
    try:
        yield
    except Exception as exc:
        logger.exception("Profile store failed to %s %s", action, uid)
        raise UpstreamFailure(f"Failed to {action} user data") from exc


class ProfileStore:
    def __init__(
        self, kv: KeyValueClient, clock: Callable[[], datetime] = _utcnow
    ):
        self.kv = kv
        self.clock = clock

    def _load(self, uid: str) -> Optional[UserProfile]:
        with _store_call("get", uid):
            raw = self.kv.get(uid)
            if raw is None:
                return None
            return UserProfile.model_validate(json.loads(raw))

    def _save(self, profile: UserProfile) -> None:
        with _store_call("save", profile.uid):
            self.kv.put(profile.uid, json.dumps(profile.to_wire()))

    def _touch(self, profile: UserProfile) -> None:
        """Sets updatedAt to now, never earlier than or equal to the stored value."""
        now = self.clock()
        previous = _parse_timestamp(profile.updated_at)
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)
        profile.updated_at = format_timestamp(now)

    def _require(self, uid: str) -> UserProfile:
        profile = self._load(uid)
        if profile is None:
            raise NotFound("User not found")
        return profile

    def get(self, uid: str) -> UserProfile:
        return self._require(uid)

    def put(self, uid: str, update: ProfileUpdate) -> tuple[UserProfile, bool]:
        """Creates or merges a profile. Returns the record and whether it was created."""
        profile = self._load(uid)
        created = profile is None
        if created:
            now = format_timestamp(self.clock())
            profile = UserProfile(uid=uid, created_at=now, updated_at=now)
        for name in _MERGE_FIELDS:
            value = getattr(update, name)
            if value is not None:
                setattr(profile, name, value)
        if not created:
            self._touch(profile)
        self._save(profile)
        return profile, created

    def delete(self, uid: str) -> None:
        with _store_call("delete", uid):
            self.kv.delete(uid)

    def add_cases(self, uid: str, cases: Iterable[CaseRef]) -> UserProfile:
        profile = self._require(uid)
        known = {case.case_number for case in profile.cases}
        for case in cases:
            if case.case_number not in known:
                profile.cases.append(case)
                known.add(case.case_number)
        self._touch(profile)
        self._save(profile)
        return profile

    def remove_cases(self, uid: str, case_numbers: Iterable[str]) -> UserProfile:
        profile = self._require(uid)
        doomed = set(case_numbers)
        profile.cases = [c for c in profile.cases if c.case_number not in doomed]
        self._touch(profile)
        self._save(profile)
        return profile

    def list_case_numbers(self, uid: str) -> list[str]:
        profile = self._load(uid)
        if profile is None:
            return []
        return sort_case_numbers(case.case_number for case in profile.cases)
