"""
Pydantic schemas for the gateway API.

Wire names are camelCase to match what the browser application already sends
and what is already stored in the profile store.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CaseRef(CamelModel):
    model_config = ConfigDict(extra="allow")

    case_number: str
    created_at: Optional[str] = None


class UserProfile(CamelModel):
    model_config = ConfigDict(extra="allow")

    uid: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    company: str = ""
    permitted: bool = False
    cases: list[CaseRef] = Field(default_factory=list)
    read_only_cases: Optional[list[CaseRef]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ProfileUpdate(CamelModel):
    """Partial profile; only fields that are present and non-null are applied."""

    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    permitted: Optional[bool] = None
    read_only_cases: Optional[list[CaseRef]] = None


class AddCasesRequest(CamelModel):
    cases: list[CaseRef] = Field(default_factory=list)


class DeleteCasesRequest(CamelModel):
    cases_to_delete: list[str] = Field(default_factory=list)


class CaseListResponse(BaseModel):
    cases: list[str]
    success: bool = True


class SuccessResponse(BaseModel):
    success: bool = True


class PasswordRequest(BaseModel):
    # Any JSON value is accepted; only a matching string verifies.
    password: Any = None


class VerificationResponse(BaseModel):
    success: bool
    error: Optional[str] = None


class CaptchaRequest(BaseModel):
    token: Optional[str] = Field(default=None, alias="cf-turnstile-response")


class AuditAppendResponse(CamelModel):
    success: bool = True
    entry_count: int
    filename: str


class AuditEntriesResponse(BaseModel):
    entries: list[dict[str, Any]]
    total: int
