from __future__ import annotations

import hmac

from fastapi import HTTPException, Request


def get_bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


async def require_cron_secret(request: Request) -> None:
    """Scheduler calls must present `Authorization: Bearer <CRON_SECRET>`."""
    secret = request.app.state.services.cron_secret
    if not secret:
        raise HTTPException(status_code=500, detail="cron_secret_not_configured")
    if not hmac.compare_digest(get_bearer_token(request), secret):
        raise HTTPException(status_code=401, detail="unauthorized")
