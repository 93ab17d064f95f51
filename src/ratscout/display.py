"""Watch-side display state fed by snapshots from the phone."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional

from ratscout.models.snapshot import Snapshot

MOON_PHASE_SYMBOLS = ("🌑", "🌒", "🌓", "🌔", "🌕", "🌖", "🌗", "🌘")


@dataclass
class DisplayState:
    """Last-known-good field values shown on the watchface.

    Fields start as placeholders and are only overwritten by sections that
    are present in an applied snapshot.
    """

    glucose_value: str = "--"
    glucose_delta: str = ""
    glucose_age: str = ""
    glucose_trend: Optional[str] = None
    sun_time: str = "--:--"
    sun_is_rising: bool = True
    moon_time: str = "--:--"
    moon_is_rising: bool = True
    moon_phase: int = 0
    temperature: str = "--"
    wind: str = "--"
    has_rain: bool = False
    schedule_code: str = ""
    updates: int = 0

    def apply(self, snapshot: Snapshot) -> None:
        if snapshot.glucose is not None:
            g = snapshot.glucose
            self.glucose_value = g.value or "--"
            self.glucose_delta = g.delta
            self.glucose_age = f"{g.age_minutes}m" if g.age_minutes else ""
            self.glucose_trend = g.trend
        if snapshot.astronomy is not None:
            a = snapshot.astronomy
            self.sun_time = a.sun_event_time
            self.sun_is_rising = a.sun_is_rising
            self.moon_time = a.moon_event_time
            self.moon_is_rising = a.moon_is_rising
            self.moon_phase = a.moon_phase_index
        if snapshot.weather is not None:
            w = snapshot.weather
            self.temperature = f"{w.temperature:g}°"
            self.wind = f"{w.wind:g}{w.wind_unit}"
            self.has_rain = bool(w.has_rain)
        if snapshot.schedule is not None:
            self.schedule_code = snapshot.schedule.code
        self.updates += 1

    @property
    def moon_symbol(self) -> str:
        return MOON_PHASE_SYMBOLS[self.moon_phase] if 0 <= self.moon_phase < 8 else MOON_PHASE_SYMBOLS[0]

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
