"""Shared enums for the Zipway URL shortener.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["LinkStatus", "HealthStatus", "RequestStatus", "CacheStatus", "SessionTier"]


class LinkStatus(StrEnum):
    """Lifecycle status of a short link."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    PAUSED = "paused"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class SessionTier(StrEnum):
    """Where a session validation was answered from."""

    SESSION_CACHE = "session_cache"
    PROVIDER_CACHE = "provider_cache"
    DATABASE = "database"
    NONE = "none"
