from typing import Any

from fastapi import APIRouter, Body, Depends, Request

from site_telemetry.api.dependencies import (
    get_query_pipeline,
    get_telemetry_service,
    require_ingest_token,
)
from site_telemetry.config.settings import Settings
from site_telemetry.pipeline.context import RequestContext, RouteConfig
from site_telemetry.pipeline.stages import QueryPipeline
from site_telemetry.services.telemetry_service import TelemetryService

router = APIRouter()

DEVICE_LATEST = "device_latest"
SITE_SUMMARY = "site_summary"


def build_route_configs(settings: Settings) -> dict[str, RouteConfig]:
    return {
        DEVICE_LATEST: RouteConfig(
            name=DEVICE_LATEST,
            cache_ttl_seconds=settings.latest_route_cache_ttl_seconds,
        ),
        SITE_SUMMARY: RouteConfig(
            name=SITE_SUMMARY,
            cache_ttl_seconds=settings.summary_cache_ttl_seconds,
        ),
    }


@router.post("/telemetry", status_code=201, dependencies=[Depends(require_ingest_token)])
async def ingest_telemetry(
    payload: Any = Body(...),
    service: TelemetryService = Depends(get_telemetry_service),
):
    result = await service.ingest(payload)
    if isinstance(result, list):
        return [record.model_dump(mode="json", by_alias=True) for record in result]
    return result.model_dump(mode="json", by_alias=True)


@router.get("/device/{deviceId}/latest")
async def get_device_latest(
    request: Request,
    service: TelemetryService = Depends(get_telemetry_service),
    pipeline: QueryPipeline = Depends(get_query_pipeline),
):
    ctx = RequestContext.from_request(
        request, request.app.state.route_configs[DEVICE_LATEST]
    )
    return await pipeline.run(
        ctx, lambda ctx: service.get_latest(ctx.path_params["deviceId"])
    )


@router.get("/site/{siteId}/summary")
async def get_site_summary(
    request: Request,
    service: TelemetryService = Depends(get_telemetry_service),
    pipeline: QueryPipeline = Depends(get_query_pipeline),
):
    ctx = RequestContext.from_request(
        request, request.app.state.route_configs[SITE_SUMMARY]
    )
    return await pipeline.run(
        ctx,
        lambda ctx: service.summarize(
            ctx.path_params["siteId"], ctx.start_time, ctx.end_time
        ),
    )
