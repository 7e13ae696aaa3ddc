from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("")
async def health_check():
    return {"status": "healthy", "service": "site-telemetry"}


@router.get("/store")
async def store_health(request: Request):
    return await _ping("store", request.app.state.store)


@router.get("/cache")
async def cache_health(request: Request):
    return await _ping("cache", request.app.state.cache)


async def _ping(name: str, backend) -> JSONResponse:
    if await backend.ping():
        return JSONResponse(status_code=200, content={"status": "up", "component": name})
    return JSONResponse(status_code=503, content={"status": "down", "component": name})
