"""
Weather source — current conditions from OpenWeatherMap.

Always fetched in metric units; the configured unit system is applied
when presenting.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from ratscout.errors import NoCredentials, NoLocation, UpstreamUnavailable
from ratscout.models.snapshot import WeatherReport
from ratscout.sources.base import FetchContext, UpstreamSource, round_half_up

OWM_URL = "https://api.openweathermap.org/data/2.5/weather"
WEATHER_TTL_MS = 30 * 60 * 1000
MS_TO_MPH = 2.236936


@dataclass(frozen=True)
class WeatherObservation:
    temperature_c: float
    wind_ms: float
    condition_id: Optional[int] = None
    description: str = ""


def parse_observation(data: Any) -> WeatherObservation:
    try:
        conditions = data.get("weather") or [{}]
        condition_id = conditions[0].get("id")
        return WeatherObservation(
            temperature_c=float(data["main"]["temp"]),
            wind_ms=float(data["wind"]["speed"]),
            condition_id=int(condition_id) if condition_id is not None else None,
            description=conditions[0].get("main", ""),
        )
    except (KeyError, TypeError, ValueError, AttributeError, IndexError) as e:
        raise UpstreamUnavailable(f"Unexpected OpenWeatherMap response: {e}") from e


class WeatherSource(UpstreamSource[WeatherObservation, WeatherReport]):
    name = "weather"
    ttl_ms = WEATHER_TTL_MS

    async def _fetch_upstream(self, context: FetchContext) -> WeatherObservation:
        location = context.settings.location()
        if location is None:
            raise NoLocation("Latitude/longitude not configured")
        api_key = context.settings.get("owm_api_key")
        if not api_key:
            raise NoCredentials("OpenWeatherMap API key not configured")
        lat, lon = location
        data = await self._http.get(OWM_URL, {"lat": lat, "lon": lon, "appid": api_key, "units": "metric"})
        return parse_observation(data)

    def present(self, raw: WeatherObservation, context: FetchContext) -> WeatherReport:
        # Thunderstorm, drizzle, rain and snow groups
        has_rain = raw.condition_id is not None and 200 <= raw.condition_id < 700
        if context.settings.get("weather_units") == "imperial":
            return WeatherReport(
                temperature=round_half_up(raw.temperature_c * 9 / 5 + 32),
                temperature_unit="F",
                wind=round_half_up(raw.wind_ms * MS_TO_MPH),
                wind_unit="mph",
                has_rain=has_rain,
                description=raw.description,
            )
        return WeatherReport(
            temperature=round_half_up(raw.temperature_c),
            temperature_unit="C",
            wind=round_half_up(raw.wind_ms),
            wind_unit="m/s",
            has_rain=has_rain,
            description=raw.description,
        )
