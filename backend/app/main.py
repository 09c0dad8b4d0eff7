"""ledgersync Backend API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

import ledgersync
from ledgersync.errors import LedgerSyncError, StorageError, truncate_diagnostic
from ledgersync.storage import APP_STATES_TABLE, Query, Store

from .ai import AIProvider, build_ai_provider
from .config import Settings, get_settings
from .database import build_store
from .logging_config import configure_logging, get_logger
from .rate_limit import configure_rate_limiting, limiter
from .routes import admin_router, ai_router, sync_router

logger = get_logger("ledgersync.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings: Settings = app.state.settings
    logger.info(
        f"Starting ledgersync backend (debug={settings.debug}, "
        f"storage={'configured' if app.state.store is not None else 'not configured'}, "
        f"ai_provider={settings.ai_provider})"
    )
    yield
    logger.info("Shutting down ledgersync backend")


# =============================================================================
# Exception Handlers
# =============================================================================


async def ledgersync_error_handler(request: Request, exc: LedgerSyncError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = first.get("msg", "invalid value")
    return truncate_diagnostic(f"{location}: {message}" if location else message)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": _describe_validation_error(exc)})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "internal error"})


# =============================================================================
# Application Factory
# =============================================================================


def create_app(
    settings: Settings | None = None,
    *,
    store: Store | None = None,
    ai_provider: AIProvider | None = None,
) -> FastAPI:
    """Build the API. Configuration is resolved once here and kept on ``app.state``.

    Args:
        settings: Defaults to environment settings.
        store: Storage backend; defaults to Supabase when configured.
        ai_provider: Defaults to the provider named by ``AI_PROVIDER``.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    configure_rate_limiting(settings)

    app = FastAPI(
        title="ledgersync Backend API",
        description="Offline-first ledger state sync, admin and AI pass-through API",
        version=ledgersync.__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.settings = settings
    app.state.store = store if store is not None else build_store(settings)
    app.state.ai_provider = ai_provider if ai_provider is not None else build_ai_provider(settings)

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(LedgerSyncError, ledgersync_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(sync_router)
    app.include_router(admin_router)
    app.include_router(ai_router)

    @app.get("/")
    async def root():
        """Liveness endpoint."""
        return {
            "service": "ledgersync-backend",
            "version": ledgersync.__version__,
            "status": "ok",
        }

    @app.get("/health")
    async def health(request: Request):
        """Health check with an actual storage round trip."""
        store = request.app.state.store
        if store is None:
            return {"status": "degraded", "storage": "not configured"}

        try:
            await store.select(Query(table=APP_STATES_TABLE, columns=("workspace_id",), limit=1))
            storage_status = "connected"
        except StorageError as e:
            storage_status = f"error: {e.message[:50]}"

        overall_status = "healthy" if storage_status == "connected" else "degraded"
        return {"status": overall_status, "storage": storage_status}

    return app


app = create_app()
