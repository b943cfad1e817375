from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from api.http_errors import lifecycle_http_error
from api.middleware.auth import require_cron_secret
from notifications.errors import DeliveryFailure, LifecycleError


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_cron_secret)])


class TestEmailRequest(BaseModel):
    to: str


@router.post("/notifications/{notification_id}/requeue")
async def requeue_notification(notification_id: str, request: Request):
    try:
        record = request.app.state.services.lifecycle.requeue_failed(notification_id)
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc
    return {"ok": True, "notification": record.model_dump(mode="json")}


@router.post("/notifications/{notification_id}/release")
async def release_notification(notification_id: str, request: Request):
    try:
        record = request.app.state.services.lifecycle.release_hold(notification_id)
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc
    return {"ok": True, "notification": record.model_dump(mode="json")}


@router.post("/test-email")
async def send_test_email(payload: TestEmailRequest, request: Request):
    provider = request.app.state.services.email_provider
    now = datetime.utcnow().isoformat()
    html = (
        "<div style=\"font-family: sans-serif; max-width: 500px; margin: 0 auto;\">"
        "<h1>Email is working!</h1>"
        f"<p><strong>Timestamp:</strong> {now}</p>"
        "<p>If you received this, your email provider configuration is correct.</p></div>"
    )
    try:
        receipt = await provider.send(payload.to, "Delay Claims test email", html)
    except DeliveryFailure as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"ok": True, "id": receipt.id, "provider": receipt.provider, "to": payload.to}
