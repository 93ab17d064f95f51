"""
User settings — a flat key/value store of strings kept in ~/.ratscout/config.json.

Sources only read settings; a missing key falls back to its default and
never raises.
"""

import json
import os
from pathlib import Path
from typing import Any, Mapping, Optional

CONFIG_FILE = Path(os.environ.get("RATSCOUT_CONFIG", Path.home() / ".ratscout" / "config.json"))

DEFAULTS: dict[str, str] = {
    "dexcom_username": "",
    "dexcom_password": "",
    "dexcom_region": "us",        # us | ous | jp
    "bg_units": "mgdl",           # mgdl | mmol
    "owm_api_key": "",
    "weather_units": "metric",    # metric | imperial
    "ipgeo_api_key": "",
    "latitude": "",
    "longitude": "",
    "schedule_days_a": "",        # weekday CSV, Monday = 0
    "schedule_days_b": "",
    "schedule_days_c": "",
    "schedule_cutoff_hour": "12",
}


def load_config(path: Optional[Path] = None) -> dict[str, Any]:
    try:
        return json.loads((path or CONFIG_FILE).read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}


def save_config(cfg: dict[str, Any], path: Optional[Path] = None) -> None:
    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(cfg, indent=2))


class Settings:
    def __init__(self, values: Optional[Mapping[str, Any]] = None):
        self._values = {k: str(v) for k, v in (values or {}).items() if v is not None}

    @classmethod
    def from_file(cls, path: Optional[Path] = None) -> "Settings":
        return cls(load_config(path))

    def get(self, key: str, default: Optional[str] = None) -> str:
        value = self._values.get(key)
        if value is None or value == "":
            return default if default is not None else DEFAULTS.get(key, "")
        return value

    def get_float(self, key: str) -> Optional[float]:
        try:
            return float(self.get(key))
        except ValueError:
            return None

    def get_int(self, key: str) -> Optional[int]:
        try:
            return int(self.get(key))
        except ValueError:
            return None

    def location(self) -> Optional[tuple[float, float]]:
        lat, lon = self.get_float("latitude"), self.get_float("longitude")
        if lat is None or lon is None:
            return None
        return lat, lon

    def as_dict(self) -> dict[str, str]:
        return {**DEFAULTS, **self._values}
