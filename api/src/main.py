"""coursepulse API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.catalog import CatalogService
from src.certificates import (
    CertificateNotifier,
    LoggingCertificateNotifier,
    WebhookCertificateNotifier,
)
from src.config import Settings, get_settings
from src.core.context import get_request_id
from src.core.database import init_async_cassandra, shutdown_async_cassandra
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware
from src.core.redis import init_redis, shutdown_redis
from src.health.router import router as health_router
from src.progress.completion import CompletionSignalEmitter
from src.progress.gate import ThrottleGate
from src.progress.router import router as progress_router
from src.progress.service import ProgressService
from src.progress.store import CassandraProgressStore


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


def build_certificate_notifier(settings: Settings) -> CertificateNotifier:
    """Webhook notifier when configured, log-only otherwise."""
    if settings.certificate_webhook_configured:
        return WebhookCertificateNotifier(
            url=settings.certificate_webhook_url,
            timeout=settings.certificate_webhook_timeout_seconds,
        )
    return LoggingCertificateNotifier()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    # Initialize Redis (non-critical - app works without it)
    redis_client = None
    try:
        redis_client = await init_redis()
        logger.info("redis_initialized")
    except Exception as e:
        logger.warning(
            "redis_init_skipped",
            error=str(e),
            message="Running without Redis - course summaries are not cached",
        )
    app.state.redis = redis_client

    app.state.progress_service = None
    emitter: CompletionSignalEmitter | None = None

    # Initialize Cassandra (async)
    try:
        session = await init_async_cassandra()
        logger.info("cassandra_initialized")

        catalog = CatalogService(session=session, keyspace=settings.cassandra_keyspace)
        store = CassandraProgressStore(
            session=session,
            keyspace=settings.cassandra_keyspace,
            completion_threshold=settings.progress_completion_threshold,
            retry_backoff_ms=settings.progress_merge_retry_backoff_ms,
            max_retries=settings.progress_merge_max_retries,
        )
        gate = ThrottleGate(
            window_seconds=settings.progress_throttle_window_seconds,
            ttl_seconds=settings.progress_throttle_ttl_seconds,
            max_keys=settings.progress_throttle_max_keys,
        )
        emitter = CompletionSignalEmitter(
            store=store,
            notifier=build_certificate_notifier(settings),
        )

        app.state.progress_service = ProgressService(
            store=store,
            catalog=catalog,
            gate=gate,
            emitter=emitter,
            redis=redis_client,
            merge_timeout_seconds=settings.progress_merge_timeout_seconds,
            summary_cache_ttl_seconds=settings.progress_summary_cache_ttl_seconds,
        )
        logger.info(
            "progress_service_initialized",
            completion_threshold=settings.progress_completion_threshold,
            throttle_window_seconds=settings.progress_throttle_window_seconds,
            certificate_webhook=settings.certificate_webhook_configured,
        )
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )

    yield

    # Shutdown
    logger.info("shutting_down_application")
    if emitter is not None:
        await emitter.drain()
    await shutdown_redis()
    await shutdown_async_cassandra()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # Starlette's debug mode would render stack traces in responses
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Lesson video progress reconciliation API",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        """Get request_id from request state or context."""
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    # Global exception handlers (never expose stack traces)
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )

        # 503 keeps its message: it tells the player to resend later
        safe_message = (
            exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
            or exc.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        )
        return ORJSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                "message": str(exc.detail) if safe_message else "Internal server error",
                "status_code": exc.status_code,
                "request_id": request_id,
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Handle validation errors with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": True,
                "message": "Validation error",
                "status_code": 422,
                "request_id": request_id,
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler for unhandled exceptions.

        Details are logged internally, the client only gets a generic message.
        """
        request_id = _get_request_id_safe(request)

        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": True,
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": request_id,
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(progress_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "coursepulse API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
