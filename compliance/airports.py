from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict


EARTH_RADIUS_KM = 6371.0
DEFAULT_DISTANCE_KM = 1200.0
DEFAULT_DEPARTURE_COUNTRY = "GB"
DEFAULT_ARRIVAL_COUNTRY = "IE"


@dataclass(frozen=True)
class Airport:
    code: str
    name: str
    lat: float
    lon: float
    country: str


@dataclass(frozen=True)
class RouteInfo:
    departure_airport: str
    arrival_airport: str
    distance_km: float
    departure_country: str
    arrival_country: str
    estimated: bool = False


def _a(code: str, name: str, lat: float, lon: float, country: str) -> Airport:
    return Airport(code=code, name=name, lat=lat, lon=lon, country=country)


AIRPORTS: Dict[str, Airport] = {
    a.code: a
    for a in [
        _a("STN", "London Stansted", 51.8850, 0.2350, "GB"),
        _a("LTN", "London Luton", 51.8747, -0.3683, "GB"),
        _a("LGW", "London Gatwick", 51.1481, -0.1903, "GB"),
        _a("MAN", "Manchester", 53.3537, -2.2750, "GB"),
        _a("BRS", "Bristol", 51.3827, -2.7190, "GB"),
        _a("EDI", "Edinburgh", 55.9500, -3.3725, "GB"),
        _a("BHX", "Birmingham", 52.4539, -1.7480, "GB"),
        _a("DUB", "Dublin", 53.4213, -6.2700, "IE"),
        _a("SNN", "Shannon", 52.7020, -8.9248, "IE"),
        _a("ORK", "Cork", 51.8413, -8.4911, "IE"),
        _a("BCN", "Barcelona", 41.2971, 2.0785, "ES"),
        _a("MAD", "Madrid", 40.4983, -3.5676, "ES"),
        _a("AGP", "Malaga", 36.6749, -4.4991, "ES"),
        _a("ALC", "Alicante", 38.2822, -0.5582, "ES"),
        _a("PMI", "Palma de Mallorca", 39.5517, 2.7388, "ES"),
        _a("TFS", "Tenerife South", 28.0445, -16.5725, "ES"),
        _a("LPA", "Gran Canaria", 27.9319, -15.3866, "ES"),
        _a("ACE", "Lanzarote", 28.9455, -13.6052, "ES"),
        _a("FCO", "Rome Fiumicino", 41.8003, 12.2389, "IT"),
        _a("CIA", "Rome Ciampino", 41.7994, 12.5949, "IT"),
        _a("BGY", "Milan Bergamo", 45.6739, 9.7042, "IT"),
        _a("MXP", "Milan Malpensa", 45.6306, 8.7281, "IT"),
        _a("PSA", "Pisa", 43.6839, 10.3927, "IT"),
        _a("CDG", "Paris CDG", 49.0097, 2.5478, "FR"),
        _a("BVA", "Paris Beauvais", 49.4544, 2.1128, "FR"),
        _a("AMS", "Amsterdam", 52.3086, 4.7639, "NL"),
        _a("EIN", "Eindhoven", 51.4500, 5.3743, "NL"),
        _a("BER", "Berlin", 52.3667, 13.5033, "DE"),
        _a("CGN", "Cologne", 50.8659, 7.1427, "DE"),
        _a("FRA", "Frankfurt", 50.0333, 8.5706, "DE"),
        _a("HHN", "Frankfurt Hahn", 49.9487, 7.2639, "DE"),
        _a("BRU", "Brussels", 50.9014, 4.4844, "BE"),
        _a("CRL", "Brussels Charleroi", 50.4592, 4.4538, "BE"),
        _a("LIS", "Lisbon", 38.7756, -9.1354, "PT"),
        _a("OPO", "Porto", 41.2481, -8.6814, "PT"),
        _a("FAO", "Faro", 37.0144, -7.9659, "PT"),
        _a("ATH", "Athens", 37.9364, 23.9475, "GR"),
        _a("SKG", "Thessaloniki", 40.5197, 22.9709, "GR"),
        _a("WAW", "Warsaw", 52.1657, 20.9671, "PL"),
        _a("WMI", "Warsaw Modlin", 52.4511, 20.6517, "PL"),
        _a("KRK", "Krakow", 50.0777, 19.7848, "PL"),
        _a("GDN", "Gdansk", 54.3776, 18.4662, "PL"),
        _a("PRG", "Prague", 50.1008, 14.2600, "CZ"),
        _a("BUD", "Budapest", 47.4298, 19.2611, "HU"),
        _a("VIE", "Vienna", 48.1103, 16.5697, "AT"),
    ]
}


def great_circle_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def lookup(code: str | None) -> Airport | None:
    return AIRPORTS.get(str(code or "").strip().upper())


def resolve_route(departure: str | None, arrival: str | None) -> RouteInfo:
    dep_code = str(departure or "UNK").strip().upper() or "UNK"
    arr_code = str(arrival or "UNK").strip().upper() or "UNK"
    dep = lookup(dep_code)
    arr = lookup(arr_code)
    if dep and arr:
        return RouteInfo(
            departure_airport=dep_code,
            arrival_airport=arr_code,
            distance_km=great_circle_km(dep.lat, dep.lon, arr.lat, arr.lon),
            departure_country=dep.country,
            arrival_country=arr.country,
        )
    # Unknown routes are treated as a typical short-haul UK/Ireland hop.
    return RouteInfo(
        departure_airport=dep_code,
        arrival_airport=arr_code,
        distance_km=DEFAULT_DISTANCE_KM,
        departure_country=dep.country if dep else DEFAULT_DEPARTURE_COUNTRY,
        arrival_country=arr.country if arr else DEFAULT_ARRIVAL_COUNTRY,
        estimated=True,
    )
