"""FastAPI route definitions for the Zipway REST API.

This module provides all HTTP endpoints with dependency injection, error
translation and response serialization around the link service.

API Endpoint Overview
=====================
::
    GET  /
        └─ RootResponse (200)

    GET  /health
        └─ HealthResponse (200)

    POST /api/shorten            (session cookie required)
        ├─ LinkCreate (request body)
        └─ ShortenResponse (200) or 400/401/409/500

    GET  /api/resolve/:slug
        └─ ResolveResponse (200) or 404

    GET  /:slug
        └─ 301 Redirect or 404

How to Use
===========
**Step 1 — Include the router**::
    from zipway.routes import router
    app.include_router(router)

**Step 2 — Call endpoints**::
    # Shorten (needs a better-auth session cookie)
    POST http://localhost:8080/api/shorten
    {"target_url": "https://example.com", "custom_slug": "my-link"}

    # Redirect
    GET http://localhost:8080/my-link

Key Behaviours
===============
- Paused and unknown links both answer 404 so link existence does not leak;
  logs and metrics still tell them apart.
- Reserved slugs are rejected before the service is called.
- Every core call runs under REQUEST_TIMEOUT_SECONDS; expiry answers 504.
- The public resolve endpoint is cacheable by CDNs for a minute.

Endpoints:
    /:  Service banner.
    /health:  Health check for monitoring.
    /api/shorten:  Create new short links.
    /api/resolve/:slug:  Resolve a slug to its target as JSON.
    /:slug:  Redirect to the target.
"""

import asyncio
import datetime
import time
from collections.abc import Awaitable

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import text

from zipway.dependencies import RequestContext, get_current_user_id, get_link_service, get_request_context
from zipway.enums import HealthStatus
from zipway.exceptions import (
    InternalError,
    LinkNotFoundError,
    LinkPausedError,
    ShortIDConflictError,
    UnauthorizedError,
    ValidationError,
)
from zipway.link_service import LinkService
from zipway.schemas import (
    ErrorResponse,
    HealthResponse,
    LinkCreate,
    LinkDetails,
    ResolveResponse,
    RootResponse,
    ShortenResponse,
)

__all__ = ["RESERVED_SLUGS", "router"]

router = APIRouter()

_started_at = time.monotonic()

RESERVED_SLUGS = frozenset(
    {
        "api",
        "swagger",
        "shorten",
        "admin",
        "health",
        "metrics",
        "docs",
        "static",
        "assets",
    }
)

RESOLVE_CACHE_CONTROL = "public, max-age=60, s-maxage=60, stale-while-revalidate=300"


def is_reserved_slug(slug: str) -> bool:
    return slug.lower() in RESERVED_SLUGS


@router.get("/", response_model=RootResponse, tags=["meta"])
async def root(ctx: RequestContext = Depends(get_request_context)) -> RootResponse:
    return RootResponse(
        message=ctx.settings.APP_NAME,
        version=ctx.settings.APP_VERSION,
        status="ok",
        timestamp=datetime.datetime.now(datetime.timezone.utc),
        uptime=str(datetime.timedelta(seconds=int(time.monotonic() - _started_at))),
        docs=f"{ctx.settings.BASE_URL}/docs",
    )


async def _check_dependency(name: str, check: Awaitable[object], ctx: RequestContext) -> HealthStatus:
    try:
        await check
    except Exception as exc:
        ctx.logger.error(f"{name} health check failed: {exc}")
        return HealthStatus.UNHEALTHY
    return HealthStatus.HEALTHY


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    ctx.operation = "health"
    database = await _check_dependency("Database", ctx.database.execute(text("SELECT 1")), ctx)
    cache = await _check_dependency("Cache", ctx.cache_writer.ping(), ctx)

    healthy = database is HealthStatus.HEALTHY and cache is HealthStatus.HEALTHY
    status = HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY
    if not healthy:
        ctx.logger.warning(f"Health check degraded: database={database}, cache={cache}")
    return HealthResponse(status=status, database=database, cache=cache)


@router.post(
    "/api/shorten",
    response_model=ShortenResponse,
    tags=["links"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def shorten_url(
    payload: LinkCreate,
    user_id: str = Depends(get_current_user_id),
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> ShortenResponse:
    ctx.operation = "shorten"
    ctx.logger.info(
        f"Link shortening requested: {payload.target_url}",
        extra={"custom_slug": payload.custom_slug},
    )

    if payload.custom_slug and is_reserved_slug(payload.custom_slug):
        raise HTTPException(
            status_code=400,
            detail=f"The slug '{payload.custom_slug}' is reserved and cannot be used. Please choose a different one.",
        )

    try:
        async with asyncio.timeout(ctx.settings.REQUEST_TIMEOUT_SECONDS):
            link = await service.shorten_url(payload.target_url, payload.custom_slug, user_id)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except UnauthorizedError as exc:
        raise HTTPException(status_code=401, detail="Unauthorized: User ID not found") from exc
    except ShortIDConflictError as exc:
        slug = payload.custom_slug or "generated"
        raise HTTPException(
            status_code=409,
            detail=f"The custom slug '{slug}' is already in use. Please choose a different one.",
        ) from exc
    except InternalError as exc:
        raise HTTPException(status_code=500, detail="An error occurred while creating the link") from exc
    except TimeoutError as exc:
        ctx.logger.error(f"Link creation timed out after {ctx.elapsed_ms():.1f}ms")
        raise HTTPException(status_code=504, detail="Link creation timed out") from exc

    ctx.logger.info(
        f"Link shortened successfully: {link.short_id}",
        extra={"short_id": link.short_id, "duration_ms": ctx.elapsed_ms()},
    )
    return ShortenResponse(
        short_url=f"{ctx.settings.short_url_base}/{link.short_id}",
        details=LinkDetails.model_validate(link),
    )


async def _resolve(slug: str, ctx: RequestContext, service: LinkService) -> str:
    try:
        async with asyncio.timeout(ctx.settings.REQUEST_TIMEOUT_SECONDS):
            return await service.resolve_url(slug)
    except LinkPausedError as exc:
        ctx.logger.info(f"Resolve blocked - link paused: {slug}", extra={"error": "paused"})
        raise HTTPException(status_code=404, detail="Link not found") from exc
    except (LinkNotFoundError, ValidationError) as exc:
        ctx.logger.info(f"Resolve failed - link not found: {slug}", extra={"error": "not_found"})
        raise HTTPException(status_code=404, detail="Link not found") from exc
    except InternalError as exc:
        raise HTTPException(status_code=500, detail="An error occurred while resolving the link") from exc
    except TimeoutError as exc:
        ctx.logger.error(f"Resolve timed out for {slug} after {ctx.elapsed_ms():.1f}ms")
        raise HTTPException(status_code=504, detail="Link resolution timed out") from exc


@router.get(
    "/api/resolve/{slug}",
    response_model=ResolveResponse,
    tags=["links"],
    responses={404: {"model": ErrorResponse}},
)
async def resolve_slug(
    slug: str,
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> ResolveResponse:
    ctx.operation = "resolve"
    target_url = await _resolve(slug, ctx, service)
    response.headers["Cache-Control"] = RESOLVE_CACHE_CONTROL
    return ResolveResponse(target_url=target_url)


@router.get("/{slug}", tags=["redirect"], responses={404: {"model": ErrorResponse}})
async def redirect_to_target(
    slug: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> RedirectResponse:
    ctx.operation = "redirect"
    target_url = await _resolve(slug, ctx, service)
    ctx.logger.info(
        f"Redirect successful: {slug} -> {target_url}",
        extra={"short_id": slug, "duration_ms": ctx.elapsed_ms()},
    )
    return RedirectResponse(url=target_url, status_code=301)
