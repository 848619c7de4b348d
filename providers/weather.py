"""
providers.weather – daily high/low, current and feels-like temps for a few cities.

Source: GET https://api.open-meteo.com/v1/forecast (no key required)

Cities are fetched in parallel; a city whose fetch fails keeps its previous
reading.  The snapshot is only rewritten when the city readings change
(``fetchedAt`` is ignored for the comparison).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import requests

from config import HTTP_TIMEOUT
from db.store import KeyValueStore
from display.frames import FRAME_LIMIT, create_frame, create_response, message_response
from providers.base import BaseProvider, fetch_all, is_quarter_hour, register_provider

log = logging.getLogger(__name__)

FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

ICON_NO_DATA = "i2056"


@dataclass(frozen=True)
class City:
    name: str
    lat: float
    lon: float
    icon: str


CITIES: tuple[City, ...] = (
    City("Portland", 45.5299, -122.5205, "i73071"),
    City("LA", 34.0585, -118.4161, "i73072"),
    City("NYC", 40.7809, -73.9668, "i73073"),
    City("Kona", 19.6400, -155.9969, "i73074"),
    City("Vrsac", 45.1167, 21.3033, "i73075"),
)

FRAMES_PER_CITY = 3
MAX_CITIES_PER_PAGE = FRAME_LIMIT // FRAMES_PER_CITY

# WMO weather interpretation codes -> short display label
# https://open-meteo.com/en/docs#weathervariables
WMO_LABELS: dict[int, str] = {
    0: "CLEAR", 1: "CLEAR", 2: "PTLY CLDY", 3: "OVERCAST",
    45: "FOG", 48: "FOG",
    51: "DRIZZLE", 53: "DRIZZLE", 55: "DRIZZLE",
    56: "FRZ DRZL", 57: "FRZ DRZL",
    61: "LT RAIN", 63: "RAIN", 65: "POURING",
    66: "FRZ RAIN", 67: "FRZ RAIN",
    71: "LT SNOW", 73: "SNOW", 75: "HVY SNOW", 77: "SNOW",
    80: "SHOWERS", 81: "RAIN", 82: "POURING",
    85: "SNOW SHWR", 86: "HVY SNOW",
    95: "TSTORM", 96: "HAIL", 99: "HAIL",
}


def weather_label(code: int) -> str:
    return WMO_LABELS.get(code, "UNKNOWN")


def fetch_city(city: City) -> dict[str, Any]:
    resp = requests.get(
        FORECAST_URL,
        params={
            "latitude": city.lat,
            "longitude": city.lon,
            "current": "temperature_2m,apparent_temperature,weather_code",
            "daily": "temperature_2m_max,temperature_2m_min",
            "temperature_unit": "fahrenheit",
            "timezone": "auto",
            "forecast_days": 1,
        },
        timeout=HTTP_TIMEOUT,
    )
    resp.raise_for_status()
    data = resp.json()
    try:
        current = data["current"]
        daily = data["daily"]
        code = int(current["weather_code"])
        return {
            "name": city.name,
            "icon": city.icon,
            "high": round(daily["temperature_2m_max"][0]),
            "low": round(daily["temperature_2m_min"][0]),
            "current": round(current["temperature_2m"]),
            "feelsLike": round(current["apparent_temperature"]),
            "conditionCode": code,
            "condition": weather_label(code),
        }
    except (KeyError, IndexError, TypeError) as exc:
        raise ValueError(f"malformed forecast for {city.name}: {exc}") from exc


@register_provider
class WeatherProvider(BaseProvider):
    NAME = "weather"
    STORAGE_KEY = "app:weather"

    def should_refresh(self, scheduled_time: datetime) -> bool:
        return is_quarter_hour(scheduled_time)

    def custom_refresh(
        self, store: KeyValueStore, scheduled_time: datetime | None = None
    ) -> None:
        existing = store.get_json(self.STORAGE_KEY)
        previous: dict[str, Any] = {}
        if isinstance(existing, dict) and isinstance(existing.get("cities"), list):
            previous = {c.get("name"): c for c in existing["cities"] if isinstance(c, dict)}

        cities: list[dict[str, Any]] = []
        for city, reading, error in fetch_all(CITIES, fetch_city, max_workers=len(CITIES)):
            if error is None:
                cities.append(reading)
                continue
            log.error("Weather fetch failed for %s: %s", city.name, error)
            if city.name in previous:
                cities.append(previous[city.name])

        if not cities:
            log.error("All weather fetches failed, keeping existing data")
            return
        if previous and existing.get("cities") == cities:
            log.info("Skipped weather write (no changes)")
            return

        store.put_json(self.STORAGE_KEY, {"cities": cities, "fetchedAt": int(time.time() * 1000)})
        log.info("Updated weather data for %d cities", len(cities))

    def render(self, data: Any, minute: int | None = None, **request: Any) -> dict[str, Any]:
        cities = data.get("cities") if isinstance(data, dict) else None
        if not cities:
            return message_response("No weather data", ICON_NO_DATA)

        if len(cities) > MAX_CITIES_PER_PAGE:
            if minute is None:
                minute = datetime.now().minute
            pages = -(-len(cities) // MAX_CITIES_PER_PAGE)
            start = (minute % pages) * MAX_CITIES_PER_PAGE
            cities = cities[start:start + MAX_CITIES_PER_PAGE]

        frames = []
        for city in cities:
            icon = city.get("icon")
            frames += [
                create_frame(f"H{city.get('high')} L{city.get('low')}", icon),
                create_frame(f"N{city.get('current')} F{city.get('feelsLike')}", icon),
                create_frame(city.get("condition", "UNKNOWN"), icon),
            ]
        return create_response(frames)
