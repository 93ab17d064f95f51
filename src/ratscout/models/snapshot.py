"""
Snapshot models — the unified data bundle sent from host to peripheral.

Serialized with camelCase keys. Every section is optional: a missing
section means the source was unavailable, not that its value is zero.

Sections also accept the key names the first watchface build pushed
(``timeDelta``, ``temp``, ``sunTime`` ...); they are mapped onto the
current fields when parsing and never emitted.
"""

from typing import Any, ClassVar, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    legacy_keys: ClassVar[dict[str, str]] = {}

    @model_validator(mode="before")
    @classmethod
    def _rename_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not cls.legacy_keys:
            return data
        data = dict(data)
        for old, new in cls.legacy_keys.items():
            if old in data and new not in data:
                data[new] = data.pop(old)
        return data


class GlucoseReading(_WireModel):
    legacy_keys: ClassVar[dict[str, str]] = {"timeDelta": "ageMinutes"}

    value: str
    delta: str = ""
    age_minutes: Optional[int] = None
    trend: Optional[str] = None

    @field_validator("value", "delta", mode="before")
    @classmethod
    def _number_as_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class WeatherReport(_WireModel):
    legacy_keys: ClassVar[dict[str, str]] = {"temp": "temperature", "windSpeed": "wind"}

    temperature: float
    temperature_unit: str
    wind: float
    wind_unit: str
    has_rain: Optional[bool] = None
    description: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _unit_from_wind(cls, data: Any) -> Any:
        # Old pushes carry no temperature unit; imperial wind implies Fahrenheit.
        if isinstance(data, dict) and "temperatureUnit" not in data and "temperature_unit" not in data:
            data = {**data, "temperatureUnit": "F" if data.get("windUnit") == "mph" else "C"}
        return data


class AstronomyReport(_WireModel):
    legacy_keys: ClassVar[dict[str, str]] = {
        "sunTime": "sunEventTime",
        "moonTime": "moonEventTime",
        "moonPhase": "moonPhaseIndex",
    }

    sun_event_time: str           # "HH:MM"
    sun_is_rising: bool
    moon_event_time: str          # "HH:MM"
    moon_is_rising: bool = True
    moon_phase_index: int = Field(default=0, ge=0, le=7)


class ScheduleInfo(_WireModel):
    code: Literal["A", "B", "C"]
    day: Literal["today", "tomorrow"] = "today"


SECTIONS = ("glucose", "weather", "astronomy", "schedule")


class Snapshot(_WireModel):
    glucose: Optional[GlucoseReading] = None
    weather: Optional[WeatherReport] = None
    astronomy: Optional[AstronomyReport] = None
    schedule: Optional[ScheduleInfo] = None

    def present_sections(self) -> list[str]:
        return [name for name in SECTIONS if getattr(self, name) is not None]

    def to_payload(self) -> dict[str, Any]:
        return {"type": "all", **self.model_dump(mode="json", by_alias=True, exclude_none=True)}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "Snapshot":
        """Parse a full snapshot or a single-section push.

        Single-section pushes carry the section fields at the top level,
        tagged with ``type`` = glucose | weather | astronomy | schedule.
        """
        kind = data.get("type", "all")
        if kind == "all":
            return cls.model_validate(data)
        if kind == "glucose":
            return cls(glucose=GlucoseReading.model_validate(data))
        if kind == "weather":
            return cls(weather=WeatherReport.model_validate(data))
        if kind == "astronomy":
            return cls(astronomy=AstronomyReport.model_validate(data))
        if kind == "schedule":
            return cls(schedule=ScheduleInfo.model_validate(data))
        raise ValueError(f"Unknown snapshot payload type: {kind!r}")
