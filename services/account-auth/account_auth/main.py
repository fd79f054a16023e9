"""FastAPI application wiring for the account authentication service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis
import uvicorn
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import router as v1_router, unexpected_error
from .bootstrap import seed_super_admin
from .config import Settings, get_settings
from .domain.contracts import GatewayError
from .domain.service import AuthenticationService
from .repository import AccountRepository
from .security.credentials import LockoutBackend, PasswordCredentialVerifier
from .security.lockout import LockoutTracker
from .security.redis_lockout import RedisLockoutTracker
from .security.sessions import InMemorySessionStore, RedisSessionStore
from .security.tokens import JwtTokenIssuer

logger = logging.getLogger(__name__)

settings = get_settings()


def _redis_client(settings: Settings) -> redis.Redis | None:
    """Return a connected Redis client, or ``None`` when Redis is not reachable."""
    if not settings.redis_url:
        return None
    try:
        client = redis.from_url(settings.redis_url)
        # ensure connectivity early to fail fast and fall back
        client.ping()
    except redis.RedisError as exc:
        logger.warning("redis unavailable, falling back to in-memory stores: %s", exc)
        return None
    return client


def build_lockout(settings: Settings, client: redis.Redis | None) -> LockoutBackend:
    """Instantiate the configured lockout backend, preferring Redis when available."""
    if settings.lockout_backend == "redis" and client is not None:
        logger.info("lockout tracking configured for redis backend")
        return RedisLockoutTracker(
            client,
            max_attempts=settings.lockout_max_attempts,
            lockout_seconds=settings.lockout_seconds,
        )
    logger.info("lockout tracking using in-memory backend")
    return LockoutTracker(
        max_attempts=settings.lockout_max_attempts,
        lockout_seconds=settings.lockout_seconds,
    )


def build_sessions(
    settings: Settings, client: redis.Redis | None
) -> InMemorySessionStore | RedisSessionStore:
    if settings.session_backend == "redis" and client is not None:
        return RedisSessionStore(client)
    return InMemorySessionStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, Redis, services) for the app lifecycle."""
    logging.basicConfig(level=settings.log_level)
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    repository = AccountRepository(pool)
    repository.ensure_schema()
    client = _redis_client(settings)

    tokens = JwtTokenIssuer(settings)
    credentials = PasswordCredentialVerifier(
        repository,
        build_lockout(settings, client),
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    seed_super_admin(repository, credentials, settings)
    app.state.pool = pool
    app.state.token_issuer = tokens
    app.state.auth_service = AuthenticationService(
        repository,
        credentials,
        tokens,
        build_sessions(settings, client),
        settings=settings,
    )
    try:
        yield
    finally:
        if client is not None:
            client.close()
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
app.add_exception_handler(GatewayError, unexpected_error)
app.add_exception_handler(Exception, unexpected_error)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", tags=["health"])
def metrics() -> Response:
    """Expose Prometheus metrics for scrapes."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    uvicorn.run(
        app,
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )
