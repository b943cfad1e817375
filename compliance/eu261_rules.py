from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import List

from models.schemas import Currency, EligibilityVerdict


UK_JURISDICTIONS = {"GB", "UK"}
MIN_DELAY_MINUTES = 180
LONG_HAUL_FULL_DELAY_MINUTES = 240


class InvalidInput(ValueError):
    pass


@dataclass(frozen=True)
class CompensationBand:
    label: str
    max_distance_km: float | None
    inclusive: bool
    min_delay_minutes: int
    amount_eur: int
    amount_gbp: int

    def matches(self, distance_km: float, delay_minutes: int) -> bool:
        if delay_minutes < self.min_delay_minutes:
            return False
        if self.max_distance_km is None:
            return True
        if self.inclusive:
            return distance_km <= self.max_distance_km
        return distance_km < self.max_distance_km


def format_delay(delay_minutes: int) -> str:
    return f"{delay_minutes // 60}h {delay_minutes % 60}m"


def round_km(distance_km: float) -> int:
    return int(Decimal(str(distance_km)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class EU261Calculator:
    """Maps (distance, delay, jurisdiction) to the fixed EU261/UK261 amount.

    Bands are checked in order. Only the long-haul band looks at delay beyond
    the 3-hour gate: 3-4 hours pays the reduced amount, 4+ hours the full one.
    """

    def __init__(self) -> None:
        self.bands: List[CompensationBand] = [
            CompensationBand("short_haul", 1500.0, False, MIN_DELAY_MINUTES, 250, 220),
            CompensationBand("medium_haul", 3500.0, True, MIN_DELAY_MINUTES, 400, 350),
            CompensationBand("long_haul_full", None, False, LONG_HAUL_FULL_DELAY_MINUTES, 600, 520),
            CompensationBand("long_haul_reduced", None, False, MIN_DELAY_MINUTES, 300, 260),
        ]

    def evaluate(
        self,
        distance_km: float,
        delay_minutes: int,
        departure_jurisdiction: str,
        arrival_jurisdiction: str,
    ) -> EligibilityVerdict:
        self._validate(distance_km, delay_minutes)
        route = f"{format_delay(delay_minutes)} delay on {round_km(distance_km)}km flight"
        if delay_minutes < MIN_DELAY_MINUTES:
            return EligibilityVerdict(
                eligible=False,
                amount=Decimal("0"),
                currency=Currency.EUR,
                reason=f"{route} is under the 3-hour statutory threshold",
            )
        currency = self.currency_for(departure_jurisdiction, arrival_jurisdiction)
        for band in self.bands:
            if band.matches(float(distance_km), delay_minutes):
                amount = band.amount_gbp if currency == Currency.GBP else band.amount_eur
                return EligibilityVerdict(eligible=True, amount=Decimal(amount), currency=currency, reason=route)
        raise AssertionError("compensation bands do not cover the input")  # pragma: no cover

    def currency_for(self, departure_jurisdiction: str, arrival_jurisdiction: str) -> Currency:
        codes = {str(departure_jurisdiction or "").strip().upper(), str(arrival_jurisdiction or "").strip().upper()}
        if codes & UK_JURISDICTIONS:
            return Currency.GBP
        return Currency.EUR

    def _validate(self, distance_km: float, delay_minutes: int) -> None:
        if isinstance(distance_km, bool) or not isinstance(distance_km, (int, float, Decimal)):
            raise InvalidInput("distance_km must be a number")
        if not math.isfinite(float(distance_km)) or distance_km < 0:
            raise InvalidInput(f"distance_km must be a finite number >= 0, got {distance_km!r}")
        if isinstance(delay_minutes, bool) or not isinstance(delay_minutes, int):
            raise InvalidInput(f"delay_minutes must be an integer, got {delay_minutes!r}")
        if delay_minutes < 0:
            raise InvalidInput(f"delay_minutes must be >= 0, got {delay_minutes!r}")


_DEFAULT_CALCULATOR = EU261Calculator()


def evaluate(
    distance_km: float,
    delay_minutes: int,
    departure_jurisdiction: str,
    arrival_jurisdiction: str,
) -> EligibilityVerdict:
    return _DEFAULT_CALCULATOR.evaluate(distance_km, delay_minutes, departure_jurisdiction, arrival_jurisdiction)
