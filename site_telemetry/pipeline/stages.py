import logging
import re
from typing import Awaitable, Callable

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from site_telemetry.config.settings import Settings
from site_telemetry.core.errors import BadRequest, CacheError, Unauthorized
from site_telemetry.core.rate_limiter import RateLimiter
from site_telemetry.core.timeutil import parse_instant
from site_telemetry.pipeline.cache_keys import derive_cache_key
from site_telemetry.pipeline.context import RequestContext
from site_telemetry.storage.cache_store import CacheStore

logger = logging.getLogger(__name__)

Handler = Callable[[RequestContext], Awaitable[BaseModel]]


class QueryPipeline:
    """Runs a query request through its shaping stages, in order:

    parameter shape guard, per-device rate limit, response-cache lookup,
    handler, response-cache populate. Any stage may stop the request by
    raising a ``TelemetryError``; the app's exception handlers turn it into
    the error response.
    """

    def __init__(self, settings: Settings, rate_limiter: RateLimiter, cache: CacheStore):
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.site_id_pattern = re.compile(settings.site_id_pattern)
        self.device_id_pattern = re.compile(settings.device_id_pattern)
        self.stages = [
            self.validate_params,
            self.enforce_rate_limit,
            self.lookup_cache,
            self.invoke_handler,
            self.populate_cache,
        ]

    async def run(self, ctx: RequestContext, handler: Handler) -> JSONResponse:
        ctx.handler = handler
        for stage in self.stages:
            await stage(ctx)

        headers = {"X-Cache": "HIT" if ctx.cache_hit else "MISS"}
        if ctx.rate_limit_remaining is not None:
            headers["X-RateLimit-Remaining"] = str(ctx.rate_limit_remaining)
        return JSONResponse(content=ctx.body, headers=headers)

    async def validate_params(self, ctx: RequestContext) -> None:
        site_id = ctx.path_params.get("siteId")
        device_id = ctx.path_params.get("deviceId")
        start = ctx.query.get("from")
        end = ctx.query.get("to")

        try:
            if site_id is not None:
                if not self.site_id_pattern.match(site_id):
                    raise BadRequest("Invalid siteId")

                if self.settings.summary_require_window and (not start or not end):
                    raise BadRequest("from and to query parameters are required")

            if device_id is not None and not self.device_id_pattern.match(device_id):
                raise BadRequest("Invalid deviceId")

            try:
                ctx.start_time = parse_instant(start) if start else None
                ctx.end_time = parse_instant(end) if end else None
            except ValueError:
                raise BadRequest("Dates must be valid ISO timestamps") from None

            if ctx.start_time and ctx.end_time and ctx.start_time > ctx.end_time:
                raise BadRequest("Starting Date must be before the Ending Date")
        except BadRequest as e:
            logger.warning(
                "param_validation_failed route=%s site=%s device=%s from=%s to=%s reason=%s",
                ctx.route.name,
                site_id,
                device_id,
                start,
                end,
                e.message,
            )
            raise

    async def enforce_rate_limit(self, ctx: RequestContext) -> None:
        if not ctx.route.rate_limited:
            return

        identity = ctx.headers.get(self.settings.device_id_header)
        if not identity or not identity.strip():
            raise Unauthorized("Device ID is required")

        ctx.device_identity = identity.strip()
        ctx.rate_limit_remaining = await self.rate_limiter.enforce_device_rate_limit(
            ctx.device_identity
        )

    async def lookup_cache(self, ctx: RequestContext) -> None:
        if ctx.route.cache_ttl_seconds <= 0:
            return

        ctx.cache_key = derive_cache_key(ctx.method, ctx.path, ctx.path_params, ctx.query)
        if ctx.cache_key is None:
            return

        try:
            cached = await self.cache.get_json(ctx.cache_key)
        except CacheError as e:
            logger.warning("cache_get_failed key=%s reason=%s", ctx.cache_key, e)
            return

        if cached is not None:
            ctx.cache_hit = True
            ctx.body = cached

    async def invoke_handler(self, ctx: RequestContext) -> None:
        if ctx.cache_hit:
            return

        result = await ctx.handler(ctx)
        ctx.body = result.model_dump(mode="json", by_alias=True)

    async def populate_cache(self, ctx: RequestContext) -> None:
        if ctx.cache_key is None or ctx.cache_hit:
            return

        try:
            await self.cache.set_json(ctx.cache_key, ctx.body, ctx.route.cache_ttl_seconds)
        except CacheError as e:
            logger.error("cache_set_failed key=%s reason=%s", ctx.cache_key, e)
