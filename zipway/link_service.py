"""Link Service Layer - Core Business Logic

This module owns link creation and cache-aside resolution. It coordinates the
link store and the cache through their ports and hands every side effect that
happens after the answer is known (cache writes, click tracking) to the
background task runner.

Architecture Overview
==================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                      LinkService                            │
    │  ┌─────────────────┐  ┌─────────────────┐  ┌──────────────┐ │
    │  │  shorten_url    │  │  resolve_url    │  │ background   │ │
    │  │                 │  │                 │  │              │ │
    │  │ • owner check   │  │ • cache first   │  │ • cache link │ │
    │  │ • slug / uuid   │  │ • store fallback│  │ • track click│ │
    │  │ • persist       │  │ • pause check   │  │              │ │
    │  └─────────────────┘  └─────────────────┘  └──────────────┘ │
    └─────────────────────────────────────────────────────────────┘
                │                    │                    │
                ▼                    ▼                    ▼
    ┌─────────────────┐  ┌─────────────────┐  ┌─────────────────┐
    │ LinkRepository  │  │ CacheRepository │  │ BackgroundTask  │
    │  (PostgreSQL)   │  │     (Redis)     │  │     Runner      │
    └─────────────────┘  └─────────────────┘  └─────────────────┘

Link Resolution Flow
--------------------
::
    ┌─────────────┐
    │ resolve_url │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ GET         │
    │ url<slug>   │
    └──────┬──────┘
    VALID HIT?  │
    ┌─────┴──────────────┐
    │ NO (miss/malformed) │ YES
    ▼                    ▼
┌──────────┐      ┌──────────────┐
│ store    │      │ PAUSED? ──▶  │──▶ LinkPausedError
│ lookup   │      │ track click  │
└────┬─────┘      │ (detached)   │
     │            └──────┬───────┘
     ▼                   ▼
  not found ──▶ LinkNotFoundError
  PAUSED    ──▶ LinkPausedError
  ACTIVE    ──▶ cache link + track click (detached) ──▶ target_url

Key Behaviours
===============
- Generated slugs are the first 6 characters of a UUID4; collisions are
  caught by the unique index, not pre-checked.
- A cache hit never touches the database.
- Cache entries are not invalidated when a link is paused; a stale ACTIVE
  entry keeps resolving until its 24h TTL runs out.
- Malformed cache payloads and cache read failures behave like misses.
- Background failures are logged and counted, never raised.

Usage Examples
=============
```python
service = LinkService.from_context(ctx)
link = await service.shorten_url("https://example.com", "", user_id)
target = await service.resolve_url(link.short_id)
```
"""

import logging
import time
import uuid

from prometheus_client import Counter, Histogram
from pydantic import ValidationError as PayloadValidationError

from zipway.background import BackgroundTaskRunner
from zipway.enums import CacheStatus, LinkStatus, RequestStatus
from zipway.exceptions import (
    CacheError,
    InternalError,
    LinkNotFoundError,
    LinkPausedError,
    ShortIDConflictError,
    ValidationError,
)
from zipway.models import Link
from zipway.ports import CacheRepository, LinkRepository
from zipway.schemas import CachedLinkPayload

__all__ = [
    "LINK_CACHE_TTL_SECONDS",
    "SHORT_ID_LENGTH",
    "LinkService",
    "link_cache_key",
    "stats_cache_key",
]


# ============================================================================
# CONSTANTS AND CONFIGURATION
# ============================================================================

LINK_CACHE_TTL_SECONDS = 86400  # 24 hours
SHORT_ID_LENGTH = 6


def link_cache_key(short_id: str) -> str:
    return f"url{short_id}"


def stats_cache_key(short_id: str) -> str:
    return f"stats:{short_id}"


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

LINK_CREATION_REQUESTS_TOTAL = Counter(
    "zipway_link_creation_requests_total",
    "Total link creation requests",
    ["status"],
)
LINK_RESOLUTION_REQUESTS_TOTAL = Counter(
    "zipway_link_resolution_requests_total",
    "Total link resolution requests",
    ["status", "cache_hit"],
)
LINK_CREATION_DURATION = Histogram(
    "zipway_link_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
LINK_RESOLUTION_DURATION = Histogram(
    "zipway_link_resolution_duration_seconds",
    "Time taken to resolve short links",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
CACHE_HITS_TOTAL = Counter(
    "zipway_cache_hits_total",
    "Link cache hits",
)
CACHE_MISSES_TOTAL = Counter(
    "zipway_cache_misses_total",
    "Link cache misses, including malformed payloads",
)
CACHE_ERRORS_TOTAL = Counter(
    "zipway_cache_errors_total",
    "Failed cache operations",
    ["operation"],
)
DATABASE_READS_TOTAL = Counter(
    "zipway_database_reads_total",
    "Link store read operations",
)
DATABASE_WRITES_TOTAL = Counter(
    "zipway_database_writes_total",
    "Link store write operations",
)
CLICK_TRACKING_FAILURES_TOTAL = Counter(
    "zipway_click_tracking_failures_total",
    "Durable click increments that failed",
)


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================

class LinkService:
    """Shorten and resolve links over a link store and a cache.

    Example:
        >>> service = LinkService(links, cache, BackgroundTaskRunner())
        >>> link = await service.shorten_url("https://example.com", "my-slug", "user-1")
        >>> await service.resolve_url("my-slug")
        'https://example.com'
    """

    def __init__(
        self,
        links: LinkRepository,
        cache: CacheRepository,
        tasks: BackgroundTaskRunner,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._links = links
        self._cache = cache
        self._tasks = tasks
        self._logger = logger or logging.getLogger("zipway")

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "LinkService":
        """Build a service from the shared resources carried by a RequestContext."""
        return cls(ctx.link_repository, ctx.cache_repository, ctx.background_tasks, ctx.logger)

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def shorten_url(self, target_url: str, custom_slug: str | None, user_id: str | None) -> Link:
        """Persist a new ACTIVE link owned by user_id.

        Args:
            target_url: Destination URL, stored as given.
            custom_slug: Public slug to use verbatim; empty or None generates one.
            user_id: Owner of the link; required.

        Returns:
            Link: The persisted link with created_at and clicks populated.

        Raises:
            ValidationError: If user_id is missing or empty.
            ShortIDConflictError: If the slug is already taken.
            InternalError: If the store fails for any other reason.
        """
        start_time = time.perf_counter()

        try:
            if not user_id:
                raise ValidationError("user_id is required")

            link_id, short_id = self._assign_ids(custom_slug)
            link = Link(
                id=link_id,
                short_id=short_id,
                target_url=target_url,
                user_id=user_id,
                status=LinkStatus.ACTIVE,
                clicks=0,
            )
            link = await self._links.save(link)
            DATABASE_WRITES_TOTAL.inc()

            self._tasks.submit(
                self._cache_link(link.short_id, link.target_url, link.status),
                name=f"cache_link:{link.short_id}",
            )

            duration = time.perf_counter() - start_time
            LINK_CREATION_DURATION.observe(duration)
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
            self._logger.info(f"Link created: {link.short_id} in {duration:.3f}s")
            return link

        except ValidationError as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            self._logger.warning(f"Link creation rejected: {exc}")
            raise

        except ShortIDConflictError as exc:
            LINK_CREATION_DURATION.observe(time.perf_counter() - start_time)
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            self._logger.warning(f"Link creation conflict: {exc}")
            raise

        except Exception as exc:
            LINK_CREATION_DURATION.observe(time.perf_counter() - start_time)
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.error(f"Link creation error: {exc}")
            raise

    async def resolve_url(self, short_id: str) -> str:
        """Return the target URL of a slug, cache first.

        Raises:
            ValidationError: If short_id is empty.
            LinkNotFoundError: If the slug is unknown to the store.
            LinkPausedError: If the link is paused, whether cached or stored.
            InternalError: If the store fails on a cache miss.
        """
        if not short_id:
            raise ValidationError("short_id is required")

        start_time = time.perf_counter()
        cache_hit = CacheStatus.MISS

        try:
            cached = await self._lookup_from_cache(short_id)
            if cached is not None:
                cache_hit = CacheStatus.HIT
                CACHE_HITS_TOTAL.inc()
                if cached.status is LinkStatus.PAUSED:
                    raise LinkPausedError(f"link '{short_id}' is paused")

                self._tasks.submit(self._track_click(short_id), name=f"track_click:{short_id}")
                self._record_resolution(RequestStatus.SUCCESS, cache_hit, start_time)
                self._logger.debug(f"Cache hit for {short_id}")
                return cached.target_url

            CACHE_MISSES_TOTAL.inc()
            link = await self._links.get_by_short_id(short_id)
            DATABASE_READS_TOTAL.inc()
            if link.status == LinkStatus.PAUSED:
                raise LinkPausedError(f"link '{short_id}' is paused")

            self._tasks.submit(
                self._cache_link(link.short_id, link.target_url, link.status),
                name=f"cache_link:{short_id}",
            )
            self._tasks.submit(self._track_click(short_id), name=f"track_click:{short_id}")
            self._record_resolution(RequestStatus.SUCCESS, cache_hit, start_time)
            self._logger.debug(f"Store hit for {short_id}, cache repopulation scheduled")
            return link.target_url

        except LinkPausedError:
            self._record_resolution(RequestStatus.PAUSED, cache_hit, start_time)
            self._logger.info(f"Resolution blocked, link paused: {short_id}")
            raise

        except LinkNotFoundError:
            self._record_resolution(RequestStatus.NOT_FOUND, cache_hit, start_time)
            self._logger.info(f"Resolution failed, link not found: {short_id}")
            raise

        except Exception as exc:
            self._record_resolution(RequestStatus.ERROR, cache_hit, start_time)
            self._logger.error(f"Resolution error for {short_id}: {exc}")
            raise

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    @staticmethod
    def _assign_ids(custom_slug: str | None) -> tuple[str, str]:
        if not custom_slug:
            link_id = str(uuid.uuid4())
            return link_id, link_id[:SHORT_ID_LENGTH]
        return str(uuid.uuid4()), custom_slug

    async def _lookup_from_cache(self, short_id: str) -> CachedLinkPayload | None:
        """Read and strictly decode ``url<short_id>``; anything unusable is a miss."""
        try:
            raw = await self._cache.get(link_cache_key(short_id))
        except CacheError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="get").inc()
            self._logger.warning(f"Cache read failed for {short_id}, falling back to store: {exc}")
            return None

        if not raw:
            return None

        try:
            return CachedLinkPayload.model_validate_json(raw)
        except PayloadValidationError as exc:
            self._logger.warning(f"Malformed cache payload for {short_id}, treating as miss: {exc.error_count()} errors")
            return None

    async def _cache_link(self, short_id: str, target_url: str, status: LinkStatus) -> None:
        payload = CachedLinkPayload(target_url=target_url, status=status).model_dump_json()
        try:
            await self._cache.set(link_cache_key(short_id), payload, LINK_CACHE_TTL_SECONDS)
        except CacheError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="set").inc()
            self._logger.warning(f"Failed to cache link {short_id}: {exc}")

    async def _track_click(self, short_id: str) -> None:
        try:
            await self._cache.increment_counter(stats_cache_key(short_id))
        except CacheError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="incr").inc()
            self._logger.warning(f"Failed to bump click stats for {short_id}: {exc}")

        try:
            await self._links.increment_clicks(short_id)
            DATABASE_WRITES_TOTAL.inc()
        except InternalError as exc:
            CLICK_TRACKING_FAILURES_TOTAL.inc()
            self._logger.error(f"Failed to increment clicks for shortID {short_id}: {exc}")

    @staticmethod
    def _record_resolution(status: RequestStatus, cache_hit: CacheStatus, start_time: float) -> None:
        LINK_RESOLUTION_DURATION.observe(time.perf_counter() - start_time)
        LINK_RESOLUTION_REQUESTS_TOTAL.labels(status=status, cache_hit=cache_hit).inc()
