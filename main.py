"""
main.py
-------
FastAPI application factory and entry point.

Application lifecycle:
  1. create_application() builds the app, its middleware and routers.
  2. lifespan configures logging on startup and drains the pool on shutdown.
  3. Every request gets a request id bound into the log context.
  4. LicensingError subclasses are rendered as {"detail", "code", ...};
     anything else becomes a generic 500.

Run with:
    uvicorn main:app --reload              # development
    uvicorn main:app --workers 4           # production (no --reload)
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from maintenancehub.api.routes import (
    auth,
    billing,
    companies,
    invitations,
    navigation,
    users,
)
from maintenancehub.core.config import settings
from maintenancehub.core.errors import LicensingError
from maintenancehub.core.logging import (
    bind_request_context,
    configure_logging,
    get_logger,
)
from maintenancehub.db.session import engine

logger = get_logger(__name__)

ROUTERS = (
    auth.router,
    navigation.router,
    companies.router,
    invitations.router,
    users.router,
    billing.router,
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    configure_logging()
    logger.info(
        "Starting up",
        debug=settings.DEBUG,
        seat_bypass_enabled=settings.PLATFORM_ADMIN_SEAT_BYPASS_ENABLED,
        lazy_invitation_expiry=settings.INVITATION_LAZY_EXPIRY,
        invitation_ttl_days=settings.INVITATION_TTL_DAYS,
    )
    yield
    logger.info("Shutting down, disposing DB engine")
    await engine.dispose()


def create_application() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Seat-based licensing for MaintenanceHub: per-role-class seat caps, "
            "atomic seat-checked membership changes, billing reconciliation and "
            "platform-admin role/package simulation."
        ),
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware ────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = bind_request_context(
            request.method,
            request.url.path,
            request.headers.get("X-Request-ID"),
        )
        started = time.perf_counter()
        response = await call_next(request)
        logger.debug(
            "Request finished",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        response.headers["X-Request-ID"] = request_id
        return response

    # ── Routers ───────────────────────────────────────────────────────────────
    for router in ROUTERS:
        app.include_router(router)

    # ── Exception Handlers ────────────────────────────────────────────────────

    @app.exception_handler(LicensingError)
    async def licensing_error_handler(
        request: Request, exc: LicensingError
    ) -> JSONResponse:
        # Expected rejections (seats exhausted, wrong role, ...): info, not error.
        logger.info("Request rejected", code=exc.code, status_code=exc.status_code)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error("Unhandled exception", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    # ── Health Check ──────────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], summary="Service health check")
    async def health() -> dict:
        return {"status": "ok", "app": settings.APP_NAME, "env": settings.APP_ENV}

    return app


app = create_application()
