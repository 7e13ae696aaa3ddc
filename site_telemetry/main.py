import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from site_telemetry.api import health, telemetry
from site_telemetry.api.responses import error_response
from site_telemetry.config.settings import Settings, get_settings
from site_telemetry.core.errors import TelemetryError, TooManyRequests
from site_telemetry.core.rate_limiter import RateLimiter
from site_telemetry.core.redis_client import create_redis_client
from site_telemetry.core.worker import BackgroundWorker
from site_telemetry.middleware.backpressure import BackpressureMiddleware
from site_telemetry.middleware.rate_limit import IngestRateLimitMiddleware
from site_telemetry.middleware.request_logging import RequestLoggingMiddleware
from site_telemetry.pipeline.stages import QueryPipeline
from site_telemetry.services.alert_service import AlertDispatcher, AlertEvaluator
from site_telemetry.services.latest_cache import LatestCache
from site_telemetry.services.summary_service import SummaryAggregator
from site_telemetry.services.telemetry_service import TelemetryService
from site_telemetry.services.validator import RecordValidator
from site_telemetry.storage.cache_store import CacheStore
from site_telemetry.storage.telemetry_store import TelemetryStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[TelemetryStore] = None,
    cache: Optional[CacheStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    redis_client = None
    if store is None or cache is None:
        redis_client = create_redis_client(settings)
        store = store or TelemetryStore(redis_client, settings)
        cache = cache or CacheStore(redis_client)

    worker = BackgroundWorker(settings)
    rate_limiter = RateLimiter(settings, cache)
    dispatcher = AlertDispatcher(settings, http_client)
    service = TelemetryService(
        validator=RecordValidator(settings),
        store=store,
        latest_cache=LatestCache(settings, store, cache),
        aggregator=SummaryAggregator(store),
        evaluator=AlertEvaluator(settings),
        dispatcher=dispatcher,
        worker=worker,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await worker.start()
        logger.info("Site telemetry service started")
        yield
        await worker.stop()
        await dispatcher.close()
        if redis_client is not None:
            await redis_client.close()
        logger.info("Site telemetry service stopped")

    app = FastAPI(title="Site Telemetry", version="1.0.0", lifespan=lifespan)

    app.state.settings = settings
    app.state.store = store
    app.state.cache = cache
    app.state.worker = worker
    app.state.rate_limiter = rate_limiter
    app.state.telemetry_service = service
    app.state.query_pipeline = QueryPipeline(settings, rate_limiter, cache)
    app.state.route_configs = telemetry.build_route_configs(settings)

    app.add_middleware(BackpressureMiddleware)
    app.add_middleware(IngestRateLimitMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(telemetry.router, tags=["telemetry"])
    app.include_router(telemetry.router, prefix="/v1", tags=["telemetry"])
    app.include_router(health.router, prefix="/health", tags=["health"])

    register_exception_handlers(app, settings)
    return app


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(TelemetryError)
    async def telemetry_error_handler(request: Request, exc: TelemetryError):
        headers = None
        if isinstance(exc, TooManyRequests) and exc.retry_after:
            headers = {"Retry-After": str(exc.retry_after)}

        if exc.status_code >= 500:
            logger.error(
                "%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc
            )
            return error_response(settings, exc.status_code, "Internal server error", exc)

        logger.warning(
            "%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message
        )
        return error_response(settings, exc.status_code, exc.message, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return error_response(settings, 400, "Request body must be valid JSON")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(
            settings, exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc
        )
        return error_response(settings, 500, "Internal server error", exc)


app = create_app()
