"""FastAPI dependencies: shared resources, per-request context and authentication.

Dependency Graph
================
::
    get_db ─────────────┐
                        ├──▶ get_request_context ──┬──▶ get_link_service
    get_service_manager ┘                          ├──▶ get_session_validator
                                                   └──▶ get_current_user_id
                                                          (cookie → user ID)

Key Behaviours
===============
- ServiceManager is a process-wide singleton built once in the lifespan hook
  (or lazily on first request). It owns the Redis clients, the storage
  adapters, the background task runner and the configured ``zipway`` logger.
- RequestContext is cheap: it only wraps the per-request database session and
  request metadata around the shared resources.
- Log lines written through ``ctx.logger`` carry the request ID, method, path,
  client IP and, once authenticated, the user ID.
- get_current_user_id maps a missing cookie and a rejected session to 401,
  a store failure to 500 and an exceeded deadline to 504.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from zipway.background import BackgroundTaskRunner
from zipway.config import Settings, get_settings
from zipway.database import async_session, get_db
from zipway.exceptions import InternalError, SessionTokenMissingError, UnauthorizedError, ValidationError
from zipway.link_service import LinkService
from zipway.ports import CacheRepository, LinkRepository, SessionRepository
from zipway.redis import close_redis, get_redis, get_redis_read
from zipway.repositories import PostgresLinkRepository, PostgresSessionRepository, RedisCacheRepository
from zipway.session_validator import SessionValidator, extract_session_token

REQUEST_ID_HEADER = "x-request-id"


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Process-wide owner of everything that outlives a request."""

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        if self._initialized:
            return
        self.settings = get_settings()
        self.logger = self._configure_logger(self.settings.LOG_LEVEL)
        self.cache_writer = await get_redis()
        cache_reader = await get_redis_read()
        self.cache_repository: CacheRepository = RedisCacheRepository(self.cache_writer, cache_reader)
        self.link_repository: LinkRepository = PostgresLinkRepository(async_session)
        self.session_repository: SessionRepository = PostgresSessionRepository(async_session)
        self.background_tasks = BackgroundTaskRunner(self.logger)
        self._initialized = True
        self.logger.info("Service manager initialized")

    @staticmethod
    def _configure_logger(level: str) -> logging.Logger:
        logger = logging.getLogger("zipway")
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
            logger.addHandler(handler)
        logger.setLevel(level.upper())
        return logger

    async def cleanup(self) -> None:
        """Drain detached cache and click writes, then close the Redis clients."""
        if self._initialized:
            self.logger.info(f"Draining {self.background_tasks.pending} background tasks")
            await self.background_tasks.drain(timeout=self.settings.BACKGROUND_DRAIN_TIMEOUT_SECONDS)
        await close_redis()
        self._initialized = False


_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request view over the shared resources.

    Attributes:
        database: Request-scoped session, used by the health check only.
        service_manager: Shared resources.
        request_id: Taken from X-Request-ID when the caller sends one.
        method: HTTP method, for log context.
        path: Request path, for log context.
        client_ip: Remote address, when known.
        user_id: Set by get_current_user_id once the caller is authenticated.
        operation: Short name of the endpoint handling the request.
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    method: str = ""
    path: str = ""
    client_ip: Optional[str] = None
    user_id: Optional[str] = None
    operation: Optional[str] = None
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def cache_writer(self) -> redis.Redis:
        return self.service_manager.cache_writer

    @property
    def cache_repository(self) -> CacheRepository:
        return self.service_manager.cache_repository

    @property
    def link_repository(self) -> LinkRepository:
        return self.service_manager.link_repository

    @property
    def session_repository(self) -> SessionRepository:
        return self.service_manager.session_repository

    @property
    def background_tasks(self) -> BackgroundTaskRunner:
        return self.service_manager.background_tasks

    @property
    def logger(self) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "method": self.method,
                "path": self.path,
                "client_ip": self.client_ip,
                "user_id": self.user_id,
                "operation": self.operation,
            },
        )

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    ctx = RequestContext(
        database=db,
        service_manager=manager,
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
    )
    if request_id := request.headers.get(REQUEST_ID_HEADER):
        ctx.request_id = request_id
    return ctx


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> LinkService:
    return LinkService.from_context(ctx)


def get_session_validator(ctx: RequestContext = Depends(get_request_context)) -> SessionValidator:
    return SessionValidator.from_context(ctx)


async def get_current_user_id(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    validator: SessionValidator = Depends(get_session_validator),
) -> str:
    """Authenticate the caller from its session cookie and return its user ID."""
    try:
        token = extract_session_token(request.headers.get("cookie"))
    except SessionTokenMissingError:
        ctx.logger.info("Rejected request without session cookie")
        raise HTTPException(status_code=401, detail="Unauthorized: No session found")

    try:
        async with asyncio.timeout(ctx.settings.REQUEST_TIMEOUT_SECONDS):
            user_id = await validator.validate_session(token)
    except (ValidationError, UnauthorizedError) as exc:
        ctx.logger.info(f"Rejected request with invalid session: {exc}")
        raise HTTPException(status_code=401, detail="Unauthorized: Invalid or expired session") from exc
    except InternalError as exc:
        ctx.logger.error(f"Session validation error: {exc}")
        raise HTTPException(status_code=500, detail="An error occurred while validating the session") from exc
    except TimeoutError as exc:
        ctx.logger.error(f"Session validation timed out after {ctx.elapsed_ms():.1f}ms")
        raise HTTPException(status_code=504, detail="Session validation timed out") from exc

    ctx.user_id = user_id
    return user_id
