from __future__ import annotations

import datetime as dt
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from api.http_errors import lifecycle_http_error
from compliance.airports import resolve_route
from compliance.eu261_rules import InvalidInput
from models.schemas import FlightStatus
from notifications.errors import LifecycleError
from tools.flight_status_tools import clean_flight_number


router = APIRouter(prefix="/flights", tags=["flights"])


class TrackFlightRequest(BaseModel):
    user_id: Optional[str] = None
    email: Optional[str] = None
    flight_number: str
    date: dt.date
    departure: Optional[str] = None
    arrival: Optional[str] = None
    delay_minutes: int = 0
    distance_km: Optional[float] = None
    status: FlightStatus = FlightStatus.TRACKING
    # Pull delay and status from the flight data source instead of the payload.
    refresh_status: bool = False


@router.post("/track")
async def track_flight(payload: TrackFlightRequest, request: Request):
    services = request.app.state.services
    user_id = payload.user_id
    if not user_id and not payload.email:
        raise HTTPException(status_code=400, detail="user_id_or_email_required")
    if not user_id:
        user = services.store.find_user_by_email(payload.email)
        if user is None:
            raise HTTPException(status_code=404, detail="user_not_found")
        user_id = user.id

    delay_minutes, status = payload.delay_minutes, payload.status
    departure, arrival = payload.departure, payload.arrival
    if payload.refresh_status:
        report = await services.flight_status_tools.get_flight_status(payload.flight_number, payload.date)
        delay_minutes, status = report.delay_minutes, report.status
        if report.departure_airport != "UNK":
            departure = departure or report.departure_airport
        if report.arrival_airport != "UNK":
            arrival = arrival or report.arrival_airport

    try:
        flight = services.lifecycle.track_flight(
            user_id,
            payload.flight_number,
            payload.date,
            departure=departure,
            arrival=arrival,
            delay_minutes=delay_minutes,
            status=status,
            distance_km=payload.distance_km,
        )
    except InvalidInput as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except LifecycleError as exc:
        raise lifecycle_http_error(exc) from exc
    return {"ok": True, "flight": flight.model_dump(mode="json")}


@router.get("/status")
async def flight_status(flight: str, request: Request, date: Optional[dt.date] = None):
    number = clean_flight_number(flight)
    if not number:
        raise HTTPException(status_code=400, detail="flight_number_required")
    services = request.app.state.services
    report = await services.flight_status_tools.get_flight_status(number, date or dt.datetime.utcnow().date())
    route = resolve_route(report.departure_airport, report.arrival_airport)
    verdict = services.calculator.evaluate(
        route.distance_km, report.delay_minutes, route.departure_country, route.arrival_country
    )
    return {
        "ok": True,
        "flight": report.model_dump(mode="json"),
        "distance_km": round(route.distance_km),
        "route_estimated": route.estimated,
        "compensation": verdict.model_dump(mode="json"),
    }
