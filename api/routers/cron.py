from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.middleware.auth import require_cron_secret
from notifications.errors import SelectionFailure


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


@router.post("/send-notifications", dependencies=[Depends(require_cron_secret)])
async def send_notifications(request: Request):
    dispatcher = request.app.state.services.dispatcher
    try:
        summary = await dispatcher.run_once()
    except SelectionFailure as exc:
        logger.error("cron_dispatch_aborted", extra={"error": str(exc)})
        raise HTTPException(status_code=503, detail="notification_selection_failed") from exc
    return {"ok": True, **summary.model_dump()}
