from __future__ import annotations

from fastapi import HTTPException, Request

from notifications.errors import LifecycleError


def lifecycle_http_error(exc: LifecycleError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.code)


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
