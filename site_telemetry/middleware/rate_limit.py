from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from site_telemetry.api.responses import error_response
from site_telemetry.middleware.paths import is_ingest_request


class IngestRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if is_ingest_request(request):
            rate_limiter = request.app.state.rate_limiter
            allowed, remaining = await rate_limiter.check_ingest_rate_limit()

            if not allowed:
                return error_response(
                    request.app.state.settings,
                    429,
                    "Rate limit exceeded",
                    headers={"X-RateLimit-Remaining": "0", "Retry-After": "1"},
                )

        response = await call_next(request)
        return response
