"""Pydantic schemas for request/response validation and cache payloads.

This module defines Pydantic models for API input validation, output
serialization, and the strict decoding of values read back from Redis.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ target_url: str (validated URL)
    └─ custom_slug: str | None (optional, validated)

    ShortenResponse (Output)
    ├─ short_url: str (computed)
    └─ details: LinkDetails

    ResolveResponse (Output)
    └─ target_url: str

    CachedLinkPayload (Redis "url<shortID>")
    ├─ target_url: str
    └─ status: LinkStatus

    ProviderSessionPayload (Redis "<sessionID>", written by the identity provider)
    ├─ session: {userId, expiresAt}
    └─ user: {id}

How to Use
===========
**Step 1 — Input validation**::
    @router.post("/api/shorten")
    async def shorten(payload: LinkCreate):
        ...

**Step 2 — Cache payload round trip**::
    raw = CachedLinkPayload(target_url=link.target_url, status=link.status).model_dump_json()
    payload = CachedLinkPayload.model_validate_json(raw)

Key Behaviours
===============
- URL validation uses the validators library for RFC compliance.
- Custom slugs are 1-64 characters of letters, digits, '-' and '_'.
- CachedLinkPayload rejects unknown keys, missing keys and unknown statuses,
  so any foreign shape read from Redis fails validation.
- ProviderSessionPayload tolerates extra keys; only the fields used for
  validation are declared.

Classes:
    LinkCreate:  Input schema for link creation.
    LinkDetails:  Output schema for a persisted link.
    ShortenResponse:  Output schema for created links.
    ResolveResponse:  Output schema for the public resolve endpoint.
    HealthResponse:  Output schema for health checks.
    CachedLinkPayload:  Redis payload for the resolution fast path.
    ProviderSessionPayload:  Identity provider session blob.
"""

import datetime
import re

import validators
from pydantic import BaseModel, ConfigDict, Field, field_validator

from zipway.enums import HealthStatus, LinkStatus

__all__ = [
    "LinkCreate",
    "LinkDetails",
    "ShortenResponse",
    "ResolveResponse",
    "HealthResponse",
    "RootResponse",
    "ErrorResponse",
    "CachedLinkPayload",
    "ProviderSessionPayload",
]

SLUG_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class LinkCreate(BaseModel):
    target_url: str = Field(..., examples=["https://example.com"])
    custom_slug: str | None = Field(None, examples=["my-custom-link"])

    @field_validator("target_url")
    @classmethod
    def validate_target_url(cls, v: str) -> str:
        if not validators.url(v):
            raise ValueError("Invalid URL provided")
        return v

    @field_validator("custom_slug")
    @classmethod
    def validate_custom_slug(cls, v: str | None) -> str | None:
        if v:
            if not SLUG_PATTERN.match(v):
                raise ValueError("Custom slug must be 1-64 characters of letters, digits, '-' or '_'")
        return v or None


class LinkDetails(BaseModel):
    id: str
    short_id: str
    target_url: str
    user_id: str | None = None
    status: LinkStatus
    clicks: int
    created_at: datetime.datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ShortenResponse(BaseModel):
    short_url: str
    details: LinkDetails


class ResolveResponse(BaseModel):
    target_url: str


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class RootResponse(BaseModel):
    message: str
    version: str
    status: str
    timestamp: datetime.datetime
    uptime: str
    docs: str


class ErrorResponse(BaseModel):
    detail: str


class CachedLinkPayload(BaseModel):
    """Redis cache payload for a short link, stored under ``url<shortID>``."""

    target_url: str
    status: LinkStatus

    model_config = ConfigDict(extra="forbid", strict=True)

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v: object) -> LinkStatus:
        # strict mode refuses plain strings for enums; the wire value is a string
        if isinstance(v, str):
            return LinkStatus(v)
        return v


class _ProviderSessionData(BaseModel):
    user_id: str | None = Field(None, alias="userId")
    expires_at: datetime.datetime = Field(..., alias="expiresAt")

    @field_validator("expires_at")
    @classmethod
    def assume_utc(cls, v: datetime.datetime) -> datetime.datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=datetime.timezone.utc)
        return v


class _ProviderUserData(BaseModel):
    id: str | None = None


class ProviderSessionPayload(BaseModel):
    """Session blob the identity provider stores under the bare session ID."""

    session: _ProviderSessionData
    user: _ProviderUserData | None = None

    @property
    def resolved_user_id(self) -> str:
        # null and missing ids both fall through to the user record
        return self.session.user_id or (self.user.id if self.user else None) or ""
