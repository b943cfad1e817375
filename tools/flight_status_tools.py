from __future__ import annotations

import hashlib
import logging
import random
from datetime import date, datetime
from typing import Any, Dict, List

import httpx

from models.schemas import FlightStatus, FlightStatusReport
from settings import SETTINGS

logger = logging.getLogger(__name__)


COMPLETED_PROVIDER_STATUSES = {"landed", "arrived"}


class FlightDataUnavailable(RuntimeError):
    pass


def clean_flight_number(flight_number: str) -> str:
    return "".join(str(flight_number or "").split()).upper()


class FlightStatusTools:
    """Delay and status lookups against AviationStack.

    When no API key is configured, or the provider errors or has no match,
    a synthetic estimate seeded by flight number and date is returned so the
    same query always yields the same answer.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_seconds: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else SETTINGS.aviationstack_api_key
        self.base_url = (base_url or SETTINGS.aviationstack_base_url).rstrip("/")
        self.timeout_seconds = SETTINGS.flight_api_timeout_seconds if timeout_seconds is None else timeout_seconds
        self._transport = transport

    def available(self) -> bool:
        return bool(self.api_key)

    async def get_flight_status(self, flight_number: str, flight_date: date, today: date | None = None) -> FlightStatusReport:
        number = clean_flight_number(flight_number)
        if self.available():
            try:
                return await self._fetch_remote(number, flight_date)
            except FlightDataUnavailable as exc:
                logger.warning("flight_status_provider_unavailable", extra={"flight_number": number, "error": str(exc)})
        return self.synthetic_estimate(number, flight_date, today=today)

    async def _fetch_remote(self, flight_number: str, flight_date: date) -> FlightStatusReport:
        params = {"access_key": self.api_key, "flight_iata": flight_number}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                resp = await client.get(f"{self.base_url}/flights", params=params)
                resp.raise_for_status()
                payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise FlightDataUnavailable(str(exc)) from exc
        if payload.get("error"):
            err = payload["error"]
            raise FlightDataUnavailable(str(err.get("message") or err.get("info") or err))
        rows: List[Dict[str, Any]] = list(payload.get("data") or [])
        if not rows:
            raise FlightDataUnavailable("flight_not_found")
        return self._parse_row(self._pick_row(rows, flight_date), flight_number, flight_date)

    def _pick_row(self, rows: List[Dict[str, Any]], flight_date: date) -> Dict[str, Any]:
        target = flight_date.isoformat()
        for row in rows:
            row_date = row.get("flight_date") or str((row.get("departure") or {}).get("scheduled") or "")[:10]
            if row_date == target:
                return row
        return rows[0]

    def _parse_row(self, row: Dict[str, Any], flight_number: str, flight_date: date) -> FlightStatusReport:
        departure = row.get("departure") or {}
        arrival = row.get("arrival") or {}
        delay = max(int(departure.get("delay") or 0), int(arrival.get("delay") or 0))
        provider_status = str(row.get("flight_status") or "unknown").lower()
        status = FlightStatus.COMPLETED if provider_status in COMPLETED_PROVIDER_STATUSES else FlightStatus.TRACKING
        return FlightStatusReport(
            flight_number=str((row.get("flight") or {}).get("iata") or flight_number),
            flight_date=flight_date,
            status=status,
            provider_status=provider_status,
            delay_minutes=delay,
            departure_airport=str(departure.get("iata") or "UNK"),
            arrival_airport=str(arrival.get("iata") or "UNK"),
            airline=str((row.get("airline") or {}).get("name") or ""),
        )

    def synthetic_estimate(self, flight_number: str, flight_date: date, today: date | None = None) -> FlightStatusReport:
        today = today or datetime.utcnow().date()
        seed = hashlib.sha256(f"{flight_number}:{flight_date.isoformat()}".encode("utf-8")).hexdigest()
        rng = random.Random(int(seed[:16], 16))
        chance = rng.random()
        delay = 0
        if chance > 0.95:
            delay = 180 + rng.randrange(120)
        elif chance > 0.85:
            delay = 60 + rng.randrange(120)
        elif chance > 0.7:
            delay = 15 + rng.randrange(45)
        if flight_date < today:
            status, provider_status = FlightStatus.COMPLETED, "landed"
        elif flight_date == today:
            status, provider_status = FlightStatus.TRACKING, "active"
        else:
            status, provider_status = FlightStatus.TRACKING, "scheduled"
        return FlightStatusReport(
            flight_number=flight_number,
            flight_date=flight_date,
            status=status,
            provider_status=provider_status,
            delay_minutes=delay,
            estimated=True,
        )
