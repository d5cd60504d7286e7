from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded
from typing import Optional
import logging
import time
import uuid

from .config import Settings, get_settings
from .database import Database
from .routers import bookings, health, metrics, webhooks
from .services.brand_registry import BrandRegistry
from .services.channel_client import ChannelManagerClient
from .services.errors import ServiceError
from .services.retry_poller import RetryPoller
from .services.webhook_processor import WebhookProcessor
from .services.worker_pool import WebhookWorkerPool
from .utils.logging_config import setup_logging, set_request_context, clear_request_context
from .utils.metrics import record_http_request
from .utils.rate_limiter import limiter

logger = logging.getLogger(__name__)


def start_webhook_worker(db: Database, settings: Settings):
    """Build and start the worker pool and retry poller. Shared with worker.py."""
    processor = WebhookProcessor.from_settings(db.session_factory, settings)
    pool = WebhookWorkerPool(
        processor,
        concurrency=settings.webhook_worker_concurrency,
        rate_limit_max=settings.webhook_rate_limit_max,
        rate_limit_window_seconds=settings.webhook_rate_limit_window_seconds,
    )
    poller = RetryPoller.from_settings(db.session_factory, pool, processor, settings)
    pool.start()
    poller.start()
    return processor, pool, poller


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    registry: Optional[BrandRegistry] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        setup_logging(settings.log_level, json_format=settings.log_json or settings.is_production)
        logger.info(f"Starting hub-api ({settings.environment})")

        # Misconfigured brands must stop the process here, never per request
        brand_registry = registry or BrandRegistry.from_settings(settings)
        for name, info in brand_registry.summary()["brands"].items():
            logger.info(f"Brand {name}: mode={info['mode']} writer={info['writer']}")

        db = database or Database(settings.database_url)
        db.create_tables()

        app.state.settings = settings
        app.state.registry = brand_registry
        app.state.db = db
        app.state.channel_client = ChannelManagerClient(
            settings.channel_base_url,
            settings.channel_api_key,
            settings.channel_timeout_seconds,
        )
        app.state.worker_pool = None
        app.state.retry_poller = None

        processor = None
        if settings.run_worker_in_process:
            processor, app.state.worker_pool, app.state.retry_poller = start_webhook_worker(db, settings)
        else:
            logger.info("Webhook worker runs out of process (worker.py)")

        yield

        logger.info("Shutting down hub-api")
        if app.state.retry_poller is not None:
            app.state.retry_poller.stop()
        if app.state.worker_pool is not None:
            app.state.worker_pool.stop()
        if processor is not None:
            processor.shutdown()
        db.dispose()

    app = FastAPI(
        title="Hub API",
        description="Booking write authority and channel webhook reconciliation",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter state
    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter

    # ================================
    # CORS MIDDLEWARE - MUST BE FIRST!
    # ================================
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Idempotent-Replay"],
    )

    class SecurityHeadersMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            response = await call_next(request)
            response.headers["X-Content-Type-Options"] = "nosniff"
            response.headers["X-Frame-Options"] = "DENY"
            if settings.is_production:
                response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
            return response

    class RequestIdMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
            request.state.request_id = request_id
            set_request_context(request_id)
            start = time.perf_counter()
            try:
                response = await call_next(request)
            finally:
                clear_request_context()
            route = request.scope.get("route")
            path = route.path if route is not None else request.url.path
            record_http_request(request.method, path, response.status_code, time.perf_counter() - start)
            response.headers["X-Request-ID"] = request_id
            return response

    # Add other middleware AFTER CORS
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"code": "VALIDATION", "message": "Invalid request", "errors": errors},
        )

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={"code": "RATE_LIMITED", "message": "Too many requests, try again later"},
        )

    app.include_router(bookings.router)
    app.include_router(webhooks.router)
    app.include_router(health.router)
    app.include_router(metrics.router)

    @app.get("/")
    def root():
        return {"service": "hub-api", "version": "1.0.0", "docs": "/docs"}

    return app


app = create_app()
