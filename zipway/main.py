"""ASGI entry point for the Zipway URL shortener.

Run with ``uvicorn zipway.main:app --host 0.0.0.0 --port 8080``; the OpenAPI
docs are served at ``/docs`` and Prometheus metrics at ``/metrics``.

Startup and Shutdown
====================
::
    startup                              shutdown
    ───────                              ────────
    init_db()  (urls table)              ServiceManager.cleanup()
    ServiceManager.initialize()            ├─ drain background tasks
      ├─ zipway logger                     │  (BACKGROUND_DRAIN_TIMEOUT_SECONDS)
      ├─ Redis writer / reader             └─ close Redis clients
      ├─ Postgres + Redis adapters       close_db()  (dispose engine)
      └─ BackgroundTaskRunner

Example::

    curl -X POST http://localhost:8080/api/shorten \\
         -H "Content-Type: application/json" \\
         -H "Cookie: better-auth.session_token=<token>" \\
         -d '{"target_url": "https://example.com", "custom_slug": "launch"}'

    curl -i http://localhost:8080/launch   # 301 to the target

Key Behaviours
===============
- The session table is never created here; it belongs to the identity provider.
- CORS allows credentials so the frontend can send its session cookie.
- Pending cache and click writes are flushed before the pools close.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from zipway.config import get_settings
from zipway.database import close_db, init_db
from zipway.dependencies import _service_manager
from zipway.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await init_db()
    await _service_manager.initialize()
    _service_manager.logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started ({settings.APP_ENV})")
    try:
        yield
    finally:
        await _service_manager.cleanup()
        await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Cache-aside URL shortener with custom slugs and session-cookie authentication",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Origin", "Content-Type", "Accept", "Cookie", "X-Request-ID"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=False,
    excluded_handlers=["/metrics", "/health"],
).instrument(app).expose(app)

app.include_router(router)
