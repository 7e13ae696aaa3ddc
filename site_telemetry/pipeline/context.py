from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Optional

from fastapi import Request


@dataclass(frozen=True)
class RouteConfig:
    """Per-route request shaping, declared next to the route itself."""

    name: str
    cache_ttl_seconds: int = 0
    rate_limited: bool = True


@dataclass
class RequestContext:
    route: RouteConfig
    method: str
    path: str
    path_params: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    device_identity: Optional[str] = None
    rate_limit_remaining: Optional[int] = None
    cache_key: Optional[str] = None
    cache_hit: bool = False
    body: Any = None
    handler: Optional[Callable[["RequestContext"], Awaitable[Any]]] = None

    @classmethod
    def from_request(cls, request: Request, route: RouteConfig) -> "RequestContext":
        return cls(
            route=route,
            method=request.method,
            path=request.url.path,
            path_params=dict(request.path_params),
            query=dict(request.query_params),
            headers=request.headers,
        )
