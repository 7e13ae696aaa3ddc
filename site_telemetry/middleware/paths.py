from fastapi import Request


def is_ingest_request(request: Request) -> bool:
    return request.method == "POST" and request.url.path.rstrip("/").endswith(
        "/telemetry"
    )
