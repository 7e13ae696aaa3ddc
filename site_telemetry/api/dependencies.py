import secrets

from fastapi import Request

from site_telemetry.core.errors import Unauthorized
from site_telemetry.pipeline.stages import QueryPipeline
from site_telemetry.services.telemetry_service import TelemetryService


def get_telemetry_service(request: Request) -> TelemetryService:
    return request.app.state.telemetry_service


def get_query_pipeline(request: Request) -> QueryPipeline:
    return request.app.state.query_pipeline


def require_ingest_token(request: Request) -> None:
    token = request.app.state.settings.ingest_token
    if not token:
        return

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise Unauthorized("Missing or invalid Authorization header")

    if not secrets.compare_digest(auth_header[len("Bearer "):], token):
        raise Unauthorized("Invalid token")
