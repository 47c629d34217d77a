"""
api/main.py -- FastAPI application entry point for the Acorn mod server.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the login page origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (engine, stores, Discord resolver, sweeper task) and
shutdown (cancel and await the sweeper, then dispose the engine).

Every error leaves through one of the exception handlers below and has the
same shape: {"error": {"code": ..., "message": ...}}.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.mods import router as mods_router
from auth.broker import TempLoginBroker
from auth.discord import DiscordIdentityResolver
from auth.store import AccountStore
from core.config import get_settings
from core.database import create_db_engine, ping
from core.errors import APIError, ServiceBusyError
from mods.store import ModStore

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("acorn.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: int) -> None:
    """Delete expired temp login tokens every `interval` seconds.

    Expired rows are already invisible to resolve(); this only reclaims
    space. The DELETE is blocking I/O, so it runs in a worker thread.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.broker.sweep_expired)
        except Exception:
            logger.exception("Temp login token sweep failed; will retry next interval")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the engine and stores on startup; tear them down on shutdown.

    Startup order matters:
      1. Engine first -- every store shares it.
      2. AccountStore before ModStore and the broker -- mods.author and
         access_tokens.username reference accounts.username.
      3. Sweeper last -- references app.state.broker.
    """
    logger.info("Acorn API starting up")
    engine = create_db_engine(
        _settings.database_url,
        pool_size=_settings.db_pool_size,
        pool_timeout=_settings.db_pool_timeout,
    )
    app.state.engine = engine
    app.state.account_store = AccountStore(engine)
    app.state.broker = TempLoginBroker(engine)
    app.state.mod_store = ModStore(engine)
    logger.info("Database initialized")

    app.state.identity_resolver = DiscordIdentityResolver(
        client_id=_settings.discord_client_id,
        client_secret=_settings.discord_client_secret,
        redirect_uri=_settings.discord_redirect_uri,
        api_base_url=_settings.discord_api_base_url,
        scope=_settings.discord_scope,
        timeout=_settings.discord_timeout_seconds,
    )
    if not _settings.discord_configured:
        logger.warning("DISCORD_CLIENT_ID / DISCORD_CLIENT_SECRET not set -- Discord login will fail")

    sweep_task = None
    if _settings.temp_token_sweep_interval_seconds > 0:
        sweep_task = asyncio.create_task(_sweep_loop(app, _settings.temp_token_sweep_interval_seconds))

    yield

    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    engine.dispose()
    logger.info("Acorn API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Acorn API",
    description="Mod hosting and device login for the Acorn mod manager.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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
app.include_router(mods_router, prefix="/api/v1", tags=["Mods"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(exclude_none=True),
    )


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Map domain errors to their status code.

    5xx errors are logged with the full chained cause; the client only sees
    the exception's generic public message.
    """
    if exc.is_server_error:
        logger.exception("%s on %s %s", type(exc).__name__, request.method, request.url.path, exc_info=exc)
    response = _error_response(exc.status_code, exc.code, exc.message)
    if isinstance(exc, ServiceBusyError):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(PoolTimeoutError)
async def pool_timeout_handler(request: Request, exc: PoolTimeoutError) -> JSONResponse:
    """No connection came free within db_pool_timeout. Nothing was written."""
    return await api_error_handler(request, ServiceBusyError())


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with the first offending field when a body or query param fails validation."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        # loc starts with where the value came from ("body", "query", ...); drop it.
        loc = [str(part) for part in first.get("loc", ())[1:]]
        message = f"Invalid field `{'.'.join(loc) or 'body'}`: {first.get('msg', 'invalid value')}"
    else:
        message = "Request validation failed."
    return _error_response(400, "validation_error", message)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions (404 route, 405 ...)."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied -- health checks from load balancers and monitoring
# systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return API liveness, version and a database round-trip check."""
    db_ok = ping(request.app.state.engine)
    body = HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        components={"database": "ok" if db_ok else "unavailable"},
    )
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())
