"""
Glucose source — latest CGM readings from Dexcom Share.

Readings are fetched two at a time so a delta can be shown. Values are
cached in mg/dL; the unit preference is applied when presenting, so a
settings change takes effect without a refetch.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from ratscout.auth import SessionManager, dexcom_base
from ratscout.errors import AuthExpired, HttpStatusError, UpstreamUnavailable
from ratscout.models.snapshot import GlucoseReading
from ratscout.sources.base import FetchContext, UpstreamSource, round_half_up
from ratscout.transport.http import HttpClient

logger = logging.getLogger("ratscout.sources.glucose")

GLUCOSE_TTL_MS = 5 * 60 * 1000
MMOL_FACTOR = 18.0
READINGS_WINDOW_MINUTES = 1440
READINGS_COUNT = 2

SESSION_ERROR_CODES = ("SessionIdNotFound", "SessionNotValid")
_WCF_DATE = re.compile(r"Date\((\d+)")


@dataclass(frozen=True)
class GlucoseSample:
    value_mgdl: int
    previous_mgdl: Optional[int]
    trend: Optional[str]
    timestamp_ms: int


def is_auth_failure(error: HttpStatusError) -> bool:
    if error.status_code in (401, 403):
        return True
    return error.status_code == 500 and any(code in error.body for code in SESSION_ERROR_CODES)


def parse_wcf_timestamp(raw: Any) -> Optional[int]:
    """Parse Dexcom's ``/Date(1700000000000+0000)/`` into epoch ms."""
    match = _WCF_DATE.search(str(raw or ""))
    return int(match.group(1)) if match else None


def parse_readings(readings: Any, now_ms: int) -> GlucoseSample:
    if not isinstance(readings, list) or not readings:
        raise UpstreamUnavailable("Dexcom returned no glucose readings")
    try:
        latest = readings[0]
        previous = readings[1] if len(readings) > 1 else None
        timestamp = parse_wcf_timestamp(latest.get("WT"))
        return GlucoseSample(
            value_mgdl=int(latest["Value"]),
            previous_mgdl=int(previous["Value"]) if previous else None,
            trend=latest.get("Trend"),
            timestamp_ms=timestamp if timestamp is not None else now_ms,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise UpstreamUnavailable(f"Unexpected Dexcom reading format: {e}") from e


def format_delta(delta: float, units: str) -> str:
    if units == "mmol":
        if round(delta, 1) == 0:
            return "0.0"
        return f"{'+' if delta > 0 else ''}{delta:.1f}"
    n = round_half_up(delta)
    return f"+{n}" if n > 0 else str(n)


class GlucoseSource(UpstreamSource[GlucoseSample, GlucoseReading]):
    name = "glucose"
    ttl_ms = GLUCOSE_TTL_MS

    def __init__(self, http: HttpClient, sessions: SessionManager):
        super().__init__(http)
        self._sessions = sessions

    async def _fetch_upstream(self, context: FetchContext) -> GlucoseSample:
        token = await self._sessions.token(context.settings, context.now_ms)
        try:
            return await self._read_latest(token, context)
        except AuthExpired:
            self._sessions.invalidate(token)
            logger.info("Dexcom session expired, logging in again")

        # One retry with a fresh session; a second auth failure is final for this cycle.
        token = await self._sessions.token(context.settings, context.now_ms)
        try:
            return await self._read_latest(token, context)
        except AuthExpired:
            self._sessions.invalidate(token)
            raise

    async def _read_latest(self, token: str, context: FetchContext) -> GlucoseSample:
        url = dexcom_base(context.settings.get("dexcom_region")) + "/Publisher/ReadPublisherLatestGlucoseValues"
        try:
            readings = await self._http.get(url, {
                "sessionId": token,
                "minutes": READINGS_WINDOW_MINUTES,
                "maxCount": READINGS_COUNT,
            })
        except HttpStatusError as e:
            if is_auth_failure(e):
                raise AuthExpired(f"Dexcom rejected session: HTTP {e.status_code}") from e
            raise
        return parse_readings(readings, context.now_ms)

    def present(self, raw: GlucoseSample, context: FetchContext) -> GlucoseReading:
        units = context.settings.get("bg_units")
        if units == "mmol":
            value = round(raw.value_mgdl / MMOL_FACTOR, 1)
            display = f"{value:.1f}"
            delta = ""
            if raw.previous_mgdl is not None:
                previous = round(raw.previous_mgdl / MMOL_FACTOR, 1)
                delta = format_delta(round(value - previous, 1), units)
        else:
            display = str(raw.value_mgdl)
            delta = ""
            if raw.previous_mgdl is not None:
                delta = format_delta(raw.value_mgdl - raw.previous_mgdl, units)

        age = max(0, round_half_up((context.now_ms - raw.timestamp_ms) / 60000))
        return GlucoseReading(value=display, delta=delta, age_minutes=age, trend=raw.trend)
