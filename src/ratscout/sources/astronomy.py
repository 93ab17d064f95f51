"""
Astronomy source — sun/moon event times and moon phase from ipgeolocation.io.

All times are local "HH:MM" strings and are compared lexically, which is
correct for zero-padded 24h times.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ratscout.errors import NoCredentials, NoLocation, UpstreamUnavailable
from ratscout.models.snapshot import AstronomyReport
from ratscout.sources.base import FetchContext, UpstreamSource

IPGEO_URL = "https://api.ipgeolocation.io/astronomy"
ASTRONOMY_TTL_MS = 24 * 60 * 60 * 1000

# Checked in order; the first label contained in the upstream phase wins.
MOON_PHASES: tuple[tuple[tuple[str, ...], int], ...] = (
    (("new",), 0),
    (("waxing crescent",), 1),
    (("first quarter",), 2),
    (("waxing gibbous",), 3),
    (("full",), 4),
    (("waning gibbous",), 5),
    (("third quarter", "last quarter"), 6),
    (("waning crescent",), 7),
)


@dataclass(frozen=True)
class AstronomyTimes:
    sunrise: str
    sunset: str
    moonrise: str
    moonset: str
    phase_label: str


def moon_phase_index(label: str) -> int:
    text = label.lower().replace("_", " ")
    for needles, index in MOON_PHASES:
        if any(needle in text for needle in needles):
            return index
    return 0


def sun_event(now: str, sunrise: str, sunset: str) -> tuple[bool, str]:
    """Return (is_rising, time to show). Rising unless sunset has passed."""
    rising = now < sunset
    return rising, sunrise if rising else sunset


def moon_event(now: str, moonrise: str, moonset: str) -> tuple[bool, str]:
    """Return (is_rising, time to show).

    When the moon rises before it sets, it is rising until moonrise. When it
    sets first (up across midnight), it is rising only in the gap after
    moonset and before moonrise.
    """
    if moonrise < moonset:
        rising = now < moonrise
    else:
        rising = moonset < now < moonrise
    return rising, moonrise if rising else moonset


def parse_times(data: Any) -> AstronomyTimes:
    body = data.get("astronomy", data) if isinstance(data, dict) else data
    try:
        return AstronomyTimes(
            sunrise=str(body["sunrise"]),
            sunset=str(body["sunset"]),
            moonrise=str(body["moonrise"]),
            moonset=str(body["moonset"]),
            phase_label=str(body.get("moon_phase") or ""),
        )
    except (KeyError, TypeError, AttributeError) as e:
        raise UpstreamUnavailable(f"Unexpected ipgeolocation response: {e}") from e


class AstronomySource(UpstreamSource[AstronomyTimes, AstronomyReport]):
    name = "astronomy"
    ttl_ms = ASTRONOMY_TTL_MS

    async def _fetch_upstream(self, context: FetchContext) -> AstronomyTimes:
        location = context.settings.location()
        if location is None:
            raise NoLocation("Latitude/longitude not configured")
        api_key = context.settings.get("ipgeo_api_key")
        if not api_key:
            raise NoCredentials("ipgeolocation API key not configured")
        lat, lon = location
        data = await self._http.get(IPGEO_URL, {"apiKey": api_key, "lat": lat, "long": lon})
        return parse_times(data)

    def present(self, raw: AstronomyTimes, context: FetchContext) -> AstronomyReport:
        now = context.hhmm()
        sun_rising, sun_time = sun_event(now, raw.sunrise, raw.sunset)
        moon_rising, moon_time = moon_event(now, raw.moonrise, raw.moonset)
        return AstronomyReport(
            sun_event_time=sun_time,
            sun_is_rising=sun_rising,
            moon_event_time=moon_time,
            moon_is_rising=moon_rising,
            moon_phase_index=moon_phase_index(raw.phase_label),
        )
