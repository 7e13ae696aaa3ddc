"""
Response-cache key derivation.

The two telemetry read routes get keys built from their parameters rather
than the raw URL, so equivalent requests hit the same entry whatever the
query-string order. Everything else falls back to method + path + sorted
query. Only GET requests are cacheable.
"""

from typing import Mapping, Optional
from urllib.parse import quote, urlencode


def _component(value: Optional[str]) -> str:
    return quote(value or "", safe="")


def summary_cache_key(
    site_id: Optional[str], start: Optional[str], end: Optional[str]
) -> str:
    return f"summary:{_component(site_id)}:{_component(start)}:{_component(end)}"


def latest_cache_key(device_id: Optional[str]) -> str:
    return f"latest:{_component(device_id)}"


def default_cache_key(method: str, path: str, query: Mapping[str, str]) -> str:
    return f"{method.upper()}:{path}?{urlencode(sorted(query.items()))}"


def derive_cache_key(
    method: str,
    path: str,
    path_params: Mapping[str, str],
    query: Mapping[str, str],
) -> Optional[str]:
    if method.upper() != "GET":
        return None

    if "site" in path and "summary" in path:
        return summary_cache_key(
            path_params.get("siteId"), query.get("from"), query.get("to")
        )

    if "device" in path and "latest" in path:
        return latest_cache_key(path_params.get("deviceId"))

    return default_cache_key(method, path, query)
