"""
api/main.py -- FastAPI application entry point for Volcanion Auth.

Exposes the authentication core over HTTP: login, registration, token
refresh and revocation, profile management, and RBAC administration.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost; Starlette wraps the last one added
outermost):
  1. log_requests          -- one access-log line per request, 429s included
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins

Lifespan handles startup (engine, stores, services, cleanup task) and
shutdown (cancel cleanup task, close cache, dispose engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.engine import Engine

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.roles import router as roles_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError, ErrorKind
from auth.roles import RoleService
from auth.schema import create_auth_engine
from auth.service import AuthService
from auth.store import UserStore
from auth.token_store import RefreshTokenStore
from auth.tokens import TokenIssuer
from auth.users import UserService
from cache.store import SessionCache
from core.clock import Clock
from core.config import Settings, get_settings

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("volcanion.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def attach_services(
    app: FastAPI,
    engine: Engine,
    cache: SessionCache | None,
    settings: Settings | None = None,
    clock: Clock | None = None,
) -> None:
    """Build stores and services on top of engine/cache and publish them on app.state.

    Route handlers and dependencies read only from app.state, so tests can
    call this with their own engine and cache instead of running the real
    lifespan.
    """
    settings = settings or get_settings()
    users = UserStore(engine, clock=clock)
    tokens = RefreshTokenStore(engine, clock=clock)
    issuer = TokenIssuer.from_settings(settings, clock=clock)

    app.state.engine = engine
    app.state.cache = cache
    app.state.user_store = users
    app.state.token_store = tokens
    app.state.token_issuer = issuer
    app.state.auth_service = AuthService(users, tokens, issuer, cache=cache, clock=clock, settings=settings)
    app.state.user_service = UserService(users, cache=cache, settings=settings)
    app.state.role_service = RoleService(users, cache=cache)


# ---------------------------------------------------------------------------
# Background cleanup task
# ---------------------------------------------------------------------------


async def _cleanup_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired refresh tokens and cache entries every interval_seconds.

    Runs as a background asyncio task started in lifespan startup. The sweeps
    are blocking SQLite work, so they go to a worker thread. CancelledError
    from task.cancel() during shutdown propagates out of asyncio.sleep and
    unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(app.state.auth_service.cleanup_expired_tokens)
            if app.state.cache is not None:
                purged = await asyncio.to_thread(app.state.cache.purge_expired)
                if purged:
                    logger.info("Purged %d expired cache entries", purged)
        except Exception:
            # A failed sweep is retried on the next tick; the loop must survive.
            logger.exception("Cleanup sweep failed")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Engine first -- creates the schema; every store depends on it.
      2. Cache second -- services take it at construction.
      3. Services, then the cleanup task, which calls into them.
    """
    settings = get_settings()
    logger.info("Volcanion Auth API starting up")
    engine = create_auth_engine(settings.database_url)
    logger.info("Auth database ready")
    cache = SessionCache(settings.cache_db_path)
    logger.info("Session cache initialized")
    attach_services(app, engine, cache, settings)
    app.state.cleanup_task = asyncio.create_task(_cleanup_loop(app, settings.token_cleanup_interval_seconds))

    yield

    # Shutdown
    app.state.cleanup_task.cancel()
    cache.close()
    engine.dispose()
    logger.info("Volcanion Auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Volcanion Auth API",
    description="Authentication and session management: JWT access tokens, rotating refresh tokens, RBAC claims.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware call wraps everything added before it.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Paths only -- query strings and bodies may carry credentials.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(roles_router, prefix="/api/v1", tags=["Roles"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler answers with the {"error": {...}} envelope, so clients parse
# one shape whatever the status code.
# ---------------------------------------------------------------------------

_STATUS_BY_KIND = {
    ErrorKind.validation: 422,
    ErrorKind.unauthorized: 401,
    ErrorKind.forbidden: 403,
    ErrorKind.conflict: 409,
    ErrorKind.not_found: 404,
    ErrorKind.internal: 500,
}


def _envelope(status_code: int, detail: ErrorDetail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(exclude_none=True),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map a service-layer AuthError onto its HTTP status.

    The payload is exactly exc.to_payload(): the message the service chose,
    nothing added from the request or the stored data.
    """
    return JSONResponse(status_code=_STATUS_BY_KIND.get(exc.kind, 500), content={"error": exc.to_payload()})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 plus Retry-After (seconds), taken from the exception when slowapi provides it."""
    response = _envelope(429, ErrorDetail(code="rate_limited", message="Too many requests.", detail=str(exc)))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body is not the expected JSON shape at all (wrong types, not an object).

    Reported in the same fields layout as service-level ValidationError.
    """
    fields: dict[str, list[str]] = {}
    for err in exc.errors():
        name = str(err["loc"][-1]) if err.get("loc") else "body"
        fields.setdefault(name, []).append(err.get("msg", "Invalid value"))
    return _envelope(
        422,
        ErrorDetail(code="validation_error", message="Request validation failed.", fields=fields),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Dependencies raise HTTPException with a ready-made dict detail; pass it through as-is."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _envelope(exc.status_code, ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything else is an internal error. Full detail goes to the log, never to the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _envelope(500, ErrorDetail(code="internal_error", message="An unexpected error occurred."))


# ---------------------------------------------------------------------------
# Health endpoint
#
# Registered on the app itself rather than a router, and never rate-limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and a database round-trip check."""
    components = {"app": "ok"}
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        components["database"] = "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        components["database"] = "unavailable"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=__version__, components=components)
