from __future__ import annotations

from fastapi import APIRouter, Request

from api.http_errors import client_ip, lifecycle_http_error
from notifications.errors import LifecycleError


router = APIRouter(prefix="/user", tags=["user-data"])


@router.get("/data")
async def export_user_data(email: str, request: Request):
    """GDPR Article 15/20 export of everything held for one email."""
    try:
        data = request.app.state.services.lifecycle.export_user_data(email.strip().lower(), ip=client_ip(request))
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc
    return {"ok": True, "data": data}


@router.delete("/data")
async def delete_user_data(email: str, request: Request):
    """GDPR Article 17 erasure: anonymize the user and cancel pending emails."""
    try:
        cancelled = request.app.state.services.lifecycle.erase_user(email.strip().lower(), ip=client_ip(request))
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc
    return {"ok": True, "deleted": True, "cancelled_notifications": cancelled}
