from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from site_telemetry.api.responses import error_response
from site_telemetry.middleware.paths import is_ingest_request


class BackpressureMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if is_ingest_request(request):
            worker = request.app.state.worker
            settings = request.app.state.settings
            queue_size = worker.get_queue_size()

            if queue_size >= settings.backpressure_reject_threshold:
                return error_response(
                    settings,
                    503,
                    "Service unavailable due to high load",
                    headers={"Retry-After": "5"},
                    retryAfter=5,
                )

            if queue_size >= settings.backpressure_queue_threshold:
                return error_response(
                    settings,
                    429,
                    "Too many requests, please slow down",
                    queueDepth=queue_size,
                )

        response = await call_next(request)
        return response
