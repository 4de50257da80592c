"""
api/main.py -- FastAPI application entry point for Storefront.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for allowed browser origins
  2. SessionMiddleware  -- signed cookie session holding the web UI cart
  3. log_requests       -- one log line per request with latency

Lifespan handles startup (stores, auth components, mailer, purge task) and
shutdown (cancel purge task, dispose engines) symmetrically.

Error envelope:
  Every failure -- typed StorefrontError, validation error, unknown route,
  unexpected exception -- is rendered by one of the handlers below as
      {"status": "fail" | "error", "code": "...", "message": "..."}
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.models import HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.orders import router as orders_router
from api.routes.v1.products import router as products_router
from api.routes.v1.users import router as users_router
from auth.credentials import CredentialStore
from auth.otp import OtpIssuer
from auth.sessions import SessionLog
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import Settings, get_settings
from core.errors import StorefrontError
from core.mailer import Mailer
from shop.store import ShopStore

APP_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("storefront.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def wire_components(
    app: FastAPI,
    settings: Settings,
    user_store: UserStore,
    shop_store: ShopStore,
    mailer: Optional[Mailer] = None,
) -> None:
    """Attach every shared component to app.state.

    Settings is passed by reference into each constructor; nothing reads the
    environment after this point. Tests call this with in-memory stores and a
    capturing mailer.
    """
    app.state.settings = settings
    app.state.user_store = user_store
    app.state.shop_store = shop_store
    app.state.credentials = CredentialStore(user_store)
    app.state.otp = OtpIssuer(user_store, settings)
    app.state.tokens = TokenIssuer(settings)
    app.state.sessions = SessionLog(user_store, settings)
    app.state.mailer = mailer if mailer is not None else Mailer(settings)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired session records every session_purge_interval_seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine. A database error is logged and
    the loop tries again on the next tick.
    """
    interval = app.state.settings.session_purge_interval_seconds
    while True:
        await asyncio.sleep(interval)
        try:
            app.state.sessions.purge_expired()
        except SQLAlchemyError:
            logger.exception("Session purge failed")


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: stores first, then the auth components built on
    them, then the purge task that references app.state.sessions.
    """
    logger.info("Storefront API starting up")
    wire_components(
        app,
        _settings,
        UserStore(_settings.database_url),
        ShopStore(_settings.database_url),
    )
    if not app.state.mailer.is_configured:
        logger.warning("SMTP_HOST not set -- OTP emails will be logged, not sent")
    if not app.state.user_store.has_users():
        logger.warning("No users yet -- create the first admin with: python main.py create-admin")
    app.state.sessions.purge_expired()
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.shop_store.close()
    app.state.user_store.close()
    logger.info("Storefront API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Storefront API",
    description="Multi-role e-commerce API: catalogue, orders, and email OTP authentication.",
    version=APP_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# Signed session cookie for the web UI cart. Not used for authentication.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    session_cookie="storefront_session",
    same_site="lax",
    https_only=_settings.secure_cookies,
)


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
app.include_router(products_router, prefix="/api/v1", tags=["Products"])
app.include_router(orders_router, prefix="/api/v1", tags=["Orders"])
# Web UI router is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same envelope so API clients can parse errors
# uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Render a typed domain error with its own status and code."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one entry per offending field."""
    errors = []
    for err in exc.errors():
        # loc is ("body", "email") or ("query", "page"); drop the source prefix.
        loc = [str(part) for part in err.get("loc", ())[1:]]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    message = "; ".join(f"{e['field']}: {e['message']}" for e in errors) or "Request validation failed."
    return JSONResponse(
        status_code=400,
        content={"status": "fail", "code": "validation_error", "message": message, "errors": errors},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured error for framework HTTP exceptions (unknown route, bad method)."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status": "error" if exc.status_code >= 500 else "fail",
            "code": f"http_{exc.status_code}",
            "message": str(exc.detail),
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body. The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"status": "error", "code": "internal_error", "message": "An unexpected error occurred."},
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request):
    """Return API liveness, version, and database reachability."""
    try:
        request.app.state.user_store.ping()
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        return JSONResponse(
            status_code=503,
            content=HealthResponse(status="degraded", version=APP_VERSION, database="unavailable").model_dump(),
        )
    return HealthResponse(version=APP_VERSION)
