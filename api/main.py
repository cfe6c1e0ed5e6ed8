"""
api/main.py -- FastAPI application entry point for the O'secours backend.

Exposes authentication, session management, OTP phone verification and
citizen registration over HTTP.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan handles startup (settings, database engine, stores, token codec,
ledger, SMS gateway, OTP engine, authenticator) and shutdown (dispose the
engine) symmetrically. Everything lives on app.state; nothing is built at
import time, so tests can wire their own stores through wire_services().

Every response, success or failure, uses the {message, data} envelope.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import HealthResponse
from api.responses import envelope
from api.routes.v1.auth import router as auth_router
from api.routes.v1.citizen import router as citizen_router
from api.routes.v1.info import router as info_router
from audit.store import AuditLogger
from auth.dependencies import SessionAuthenticator
from auth.ledger import TokenLedger
from auth.store import CredentialStore
from auth.tokens import TokenCodec
from core.config import Settings, get_settings
from core.db import create_db_engine
from core.errors import AuthenticationError, OtpError, ServiceError
from otp.engine import OtpEngine
from otp.store import OtpStore
from sms.gateway import LetextoGateway, SmsGateway

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("osecours.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(
    app: FastAPI,
    settings: Settings,
    engine: Engine,
    gateway: Optional[SmsGateway] = None,
) -> None:
    """Build every service on one engine and attach it to app.state.

    gateway defaults to the Letexto adapter configured from settings; tests
    pass an in-memory fake.
    """
    audit = AuditLogger(engine, environment=settings.app_env)
    credential_store = CredentialStore(engine)
    codec = TokenCodec(settings.codec_config)
    ledger = TokenLedger(credential_store, codec)
    if gateway is None:
        gateway = LetextoGateway(
            base_url=settings.sms_base_url,
            api_key=settings.sms_api_key,
            sender=settings.sms_sender,
            country_code=settings.sms_country_code,
            timeout=settings.sms_timeout_seconds,
            audit=audit,
        )

    app.state.engine = engine
    app.state.audit = audit
    app.state.credential_store = credential_store
    app.state.codec = codec
    app.state.ledger = ledger
    app.state.sms_gateway = gateway
    app.state.otp_engine = OtpEngine(
        OtpStore(engine),
        gateway,
        audit,
        length=settings.otp_length,
        expiration_minutes=settings.otp_expiration_minutes,
        max_attempts=settings.otp_max_attempts,
    )
    app.state.authenticator = SessionAuthenticator(codec, ledger, credential_store, audit)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Everything before yield runs on startup; everything after on shutdown.

    get_settings() raises here when the JWT secret for APP_ENV is missing,
    so a misconfigured deployment never starts serving.
    """
    settings = get_settings()
    logger.info("O'secours API starting up (env=%s)", settings.app_env)
    engine = create_db_engine(settings.database_url)
    wire_services(app, settings, engine)
    if not settings.sms_base_url or not settings.sms_api_key:
        logger.warning("SMS gateway not configured -- OTP requests will fail")
    logger.info("Services initialized")

    yield

    engine.dispose()
    logger.info("O'secours API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="O'secours API",
    description="Authentication, sessions and phone verification for the O'secours emergency platform.",
    version="1.0.0",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_methods=["GET", "POST", "DELETE"],
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
# handler; latency is measured around call_next.
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

app.include_router(auth_router, tags=["Auth"])
app.include_router(citizen_router, tags=["Citizen"])
app.include_router(info_router, tags=["Info"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {message, data} envelope so clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    data = exc.data
    if isinstance(exc, AuthenticationError) and exc.expired:
        data = {"expired": True}
    elif isinstance(exc, OtpError):
        data = {"code": exc.code}
    return envelope(exc.message, data, status_code=exc.status_code)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = envelope("Too many requests.", {"detail": str(exc.detail)}, status_code=429)
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Missing, unknown or malformed body fields answer 400."""
    errors = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return envelope("Invalid data", errors, status_code=400)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return envelope(str(exc.detail), status_code=exc.status_code)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return envelope("Internal server error.", status_code=500)


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied: health checks from load balancers and monitoring
# systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=get_settings().app_version)
