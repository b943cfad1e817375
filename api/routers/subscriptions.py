from __future__ import annotations

import datetime as dt
from html import escape
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import BaseModel

from api.http_errors import client_ip, lifecycle_http_error
from compliance.eu261_rules import InvalidInput
from models.schemas import FlightStatus
from notifications.errors import LifecycleError


router = APIRouter(tags=["subscriptions"])


class SubscribeFlight(BaseModel):
    flight_number: str
    date: dt.date
    departure: Optional[str] = None
    arrival: Optional[str] = None
    delay_minutes: int = 0
    distance_km: Optional[float] = None
    status: FlightStatus = FlightStatus.TRACKING


class SubscribeRequest(BaseModel):
    email: str
    consent: bool = False
    marketing_consent: bool = False
    # Track a first flight in the same call.
    flight: Optional[SubscribeFlight] = None


def _page(title: str, content: str) -> str:
    return (
        "<!DOCTYPE html><html lang=\"en\"><head><meta charset=\"UTF-8\">"
        f"<title>{escape(title)}</title></head>"
        "<body style=\"font-family: Arial, sans-serif; background: #f5f7fa; padding: 40px 20px;\">"
        "<div style=\"max-width: 500px; margin: 0 auto; background: #fff; border-radius: 12px; padding: 40px;\">"
        f"<h1>{escape(title)}</h1>{content}</div></body></html>"
    )


@router.post("/subscribe")
async def subscribe(payload: SubscribeRequest, request: Request):
    lifecycle = request.app.state.services.lifecycle
    try:
        user, created = lifecycle.register_user(
            payload.email,
            consent=payload.consent,
            marketing_consent=payload.marketing_consent,
            ip=client_ip(request),
        )
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc

    flight_id = None
    if payload.flight is not None:
        try:
            flight = lifecycle.track_flight(
                user.id,
                payload.flight.flight_number,
                payload.flight.date,
                departure=payload.flight.departure,
                arrival=payload.flight.arrival,
                delay_minutes=payload.flight.delay_minutes,
                status=payload.flight.status,
                distance_km=payload.flight.distance_km,
            )
        except InvalidInput as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except LifecycleError as exc:
            raise lifecycle_http_error(exc) from exc
        flight_id = flight.id

    message = "Check your email to verify your address." if created else "Preferences updated."
    return {
        "ok": True,
        "user_id": user.id,
        "created": created,
        "email_verified": user.email_verified,
        "flight_id": flight_id,
        "message": message,
    }


@router.get("/verify")
async def verify(request: Request, token: str = ""):
    base = request.app.state.services.app_url
    if not token:
        return RedirectResponse(url=f"{base}/?error=missing_token", status_code=307)
    try:
        request.app.state.services.lifecycle.verify_email(token)
    except LifecycleError:
        return RedirectResponse(url=f"{base}/?error=invalid_token", status_code=307)
    return RedirectResponse(url=f"{base}/?verified=success", status_code=307)


@router.get("/unsubscribe", response_class=HTMLResponse)
async def unsubscribe(request: Request, email: str = ""):
    if not email:
        return HTMLResponse(_page("Error", "<p>Email is required.</p>"), status_code=400)
    try:
        request.app.state.services.lifecycle.unsubscribe(email.strip().lower(), ip=client_ip(request))
    except LifecycleError as exc:
        if exc.status_code == 404:
            return HTMLResponse(_page("Not Found", "<p>Email not found in our system.</p>"), status_code=404)
        raise HTTPException(status_code=exc.status_code, detail=exc.code) from exc
    content = (
        "<p>You've been unsubscribed. We will no longer email you about flight delays or compensation.</p>"
        f"<p><strong>Want to delete all your data?</strong><br>"
        f"<a href=\"/api/v1/user/data?email={quote(email)}\">Request full data deletion</a></p>"
    )
    return HTMLResponse(_page("Unsubscribed", content))
