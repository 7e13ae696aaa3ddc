import traceback
from datetime import datetime, timezone
from typing import Optional

from fastapi.responses import JSONResponse

from site_telemetry.config.settings import Settings


def error_response(
    settings: Settings,
    status_code: int,
    message: str,
    exc: Optional[BaseException] = None,
    headers: Optional[dict] = None,
    **extra,
) -> JSONResponse:
    """Every error leaves the service in this envelope."""
    content = {
        "statusCode": status_code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **extra,
    }
    if exc is not None and not settings.is_production:
        content["stack"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
    return JSONResponse(status_code=status_code, content=content, headers=headers)
