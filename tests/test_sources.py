"""Tests for the glucose, weather and astronomy upstream sources."""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import httpx
import pytest

from conftest import DEXCOM_SETTINGS, LOCATION_SETTINGS, T0_MS, json_response, make_context
from ratscout.auth import SessionManager
from ratscout.errors import AuthExpired, HttpStatusError, NoCredentials, NoLocation, UpstreamUnavailable
from ratscout.models.session import SessionState
from ratscout.settings import Settings
from ratscout.sources.astronomy import AstronomySource, moon_event, moon_phase_index, sun_event
from ratscout.sources.glucose import GlucoseSource, format_delta, parse_wcf_timestamp
from ratscout.sources.weather import WeatherSource

LOGIN = "/General/LoginPublisherAccountById"
READINGS = "/Publisher/ReadPublisherLatestGlucoseValues"


def session_expired() -> httpx.Response:
    return json_response({"Code": "SessionIdNotFound", "Message": "Session not active or timed out"}, status=500)


def readings(latest: int, previous: Optional[int] = None, minutes_ago: int = 3, trend: str = "Flat") -> httpx.Response:
    ts = T0_MS - minutes_ago * 60_000
    body = [{"WT": f"Date({ts})", "ST": f"Date({ts})", "DT": f"Date({ts}+0000)", "Value": latest, "Trend": trend}]
    if previous is not None:
        body.append({"WT": f"Date({ts - 300_000})", "Value": previous, "Trend": "Flat"})
    return json_response(body)


def glucose_source(http, **settings):
    return GlucoseSource(http, SessionManager(http)), Settings({**DEXCOM_SETTINGS, **settings})


# ---------------------------------------------------------------------------
# Glucose
# ---------------------------------------------------------------------------


class TestGlucoseSource:
    @pytest.mark.asyncio
    async def test_reading_in_mgdl(self, http, upstream):
        upstream.add(LOGIN, json_response("session-1"))
        upstream.add(READINGS, readings(120, 115))
        source, settings = glucose_source(http)

        result = await source.fetch(make_context(settings))

        assert result.value == "120"
        assert result.delta == "+5"
        assert result.age_minutes == 3
        assert result.trend == "Flat"
        params = upstream.calls[-1].url.params
        assert params["sessionId"] == "session-1"
        assert params["maxCount"] == "2"

    @pytest.mark.asyncio
    async def test_reading_in_mmol(self, http, upstream):
        upstream.add(LOGIN, json_response("session-1"))
        upstream.add(READINGS, readings(120, 115))
        source, settings = glucose_source(http, bg_units="mmol")

        result = await source.fetch(make_context(settings))

        assert result.value == "6.7"
        assert result.delta == "+0.3"

    @pytest.mark.asyncio
    async def test_falling_and_single_reading(self, http, upstream):
        upstream.add(LOGIN, json_response("session-1"))
        upstream.add(READINGS, readings(101, 108))
        source, settings = glucose_source(http)
        assert (await source.fetch(make_context(settings))).delta == "-7"

        upstream.add(READINGS, readings(101))
        source, settings = glucose_source(http)
        assert (await source.fetch(make_context(settings))).delta == ""

    @pytest.mark.asyncio
    async def test_no_credentials(self, http, upstream):
        source = GlucoseSource(http, SessionManager(http))
        with pytest.raises(NoCredentials):
            await source.fetch(make_context(Settings()))
        assert upstream.calls == []

    @pytest.mark.asyncio
    async def test_empty_readings(self, http, upstream):
        upstream.add(LOGIN, json_response("session-1"))
        upstream.add(READINGS, json_response([]))
        source, settings = glucose_source(http)
        with pytest.raises(UpstreamUnavailable):
            await source.fetch(make_context(settings))

    @pytest.mark.asyncio
    async def test_cache_ttl_boundary(self, http, upstream):
        upstream.add(LOGIN, json_response("session-1"))
        upstream.add(READINGS, readings(120, 115))
        source, settings = glucose_source(http)

        await source.fetch(make_context(settings, now_ms=T0_MS))
        await source.fetch(make_context(settings, now_ms=T0_MS + 299_999))
        assert upstream.count(READINGS) == 1

        await source.fetch(make_context(settings, now_ms=T0_MS + 300_001))
        assert upstream.count(READINGS) == 2

    @pytest.mark.asyncio
    async def test_cached_reading_ages(self, http, upstream):
        upstream.add(LOGIN, json_response("session-1"))
        upstream.add(READINGS, readings(120, 115, minutes_ago=1))
        source, settings = glucose_source(http)

        await source.fetch(make_context(settings))
        later = await source.fetch(make_context(settings, now_ms=T0_MS + 120_000))
        assert later.age_minutes == 3

    @pytest.mark.asyncio
    async def test_expired_session_retried_once(self, http, upstream):
        upstream.add(LOGIN, json_response("session-1"), json_response("session-2"))
        upstream.add(READINGS, session_expired(), readings(120, 115))
        source, settings = glucose_source(http)

        result = await source.fetch(make_context(settings))

        assert result.value == "120"
        assert upstream.count(LOGIN) == 2
        assert upstream.count(READINGS) == 2
        assert upstream.calls[-1].url.params["sessionId"] == "session-2"

    @pytest.mark.asyncio
    async def test_auth_retry_is_bounded(self, http, upstream):
        upstream.add(LOGIN, json_response("session-1"), json_response("session-2"))
        upstream.add(READINGS, session_expired())
        sessions = SessionManager(http)
        source = GlucoseSource(http, sessions)

        with pytest.raises(AuthExpired):
            await source.fetch(make_context(Settings(DEXCOM_SETTINGS)))

        assert upstream.count(LOGIN) == 2
        assert upstream.count(READINGS) == 2
        assert sessions.state == SessionState.NO_SESSION
        assert source.cache is None

    @pytest.mark.asyncio
    async def test_server_error_is_not_auth(self, http, upstream):
        upstream.add(LOGIN, json_response("session-1"))
        upstream.add(READINGS, httpx.Response(503, text="maintenance"))
        source, settings = glucose_source(http)

        with pytest.raises(HttpStatusError):
            await source.fetch(make_context(settings))
        assert upstream.count(READINGS) == 1

    @pytest.mark.asyncio
    async def test_concurrent_fetches_share_one_request(self, http, upstream):
        async def slow_readings(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.01)
            return readings(120, 115)

        upstream.add(LOGIN, json_response("session-1"))
        upstream.add(READINGS, slow_readings)
        source, settings = glucose_source(http)
        ctx = make_context(settings)

        results = await asyncio.gather(source.fetch(ctx), source.fetch(ctx), source.fetch(ctx))

        assert {r.value for r in results} == {"120"}
        assert upstream.count(LOGIN) == 1
        assert upstream.count(READINGS) == 1


def test_parse_wcf_timestamp():
    assert parse_wcf_timestamp("/Date(1700000000000+0000)/") == 1700000000000
    assert parse_wcf_timestamp("Date(1700000000000)") == 1700000000000
    assert parse_wcf_timestamp("yesterday") is None
    assert parse_wcf_timestamp(None) is None


def test_format_delta():
    assert format_delta(5, "mgdl") == "+5"
    assert format_delta(-3, "mgdl") == "-3"
    assert format_delta(0, "mgdl") == "0"
    assert format_delta(0.3, "mmol") == "+0.3"
    assert format_delta(-0.4, "mmol") == "-0.4"
    assert format_delta(0.0, "mmol") == "0.0"


# ---------------------------------------------------------------------------
# Weather
# ---------------------------------------------------------------------------

OWM_BODY = {
    "weather": [{"id": 501, "main": "Rain", "description": "moderate rain"}],
    "main": {"temp": 21.6, "humidity": 80},
    "wind": {"speed": 3.4, "deg": 200},
}


class TestWeatherSource:
    @pytest.mark.asyncio
    async def test_metric(self, http, upstream):
        upstream.add("/data/2.5/weather", json_response(OWM_BODY))
        source = WeatherSource(http)

        result = await source.fetch(make_context(Settings(LOCATION_SETTINGS)))

        assert result.temperature == 22
        assert result.temperature_unit == "C"
        assert result.wind == 3
        assert result.wind_unit == "m/s"
        assert result.has_rain is True
        assert result.description == "Rain"
        params = upstream.calls[0].url.params
        assert params["units"] == "metric"
        assert params["appid"] == "owm-key"
        assert params["lat"] == "52.37"

    @pytest.mark.asyncio
    async def test_imperial_conversion(self, http, upstream):
        body = {"weather": [{"id": 800, "main": "Clear"}], "main": {"temp": 20.0}, "wind": {"speed": 10.0}}
        upstream.add("/data/2.5/weather", json_response(body))
        source = WeatherSource(http)

        result = await source.fetch(make_context(Settings({**LOCATION_SETTINGS, "weather_units": "imperial"})))

        assert result.temperature == 68
        assert result.temperature_unit == "F"
        assert result.wind == 22
        assert result.wind_unit == "mph"
        assert result.has_rain is False

    @pytest.mark.asyncio
    async def test_no_location(self, http, upstream):
        with pytest.raises(NoLocation):
            await WeatherSource(http).fetch(make_context(Settings({"owm_api_key": "owm-key"})))
        assert upstream.calls == []

    @pytest.mark.asyncio
    async def test_no_api_key(self, http, upstream):
        with pytest.raises(NoCredentials):
            await WeatherSource(http).fetch(make_context(Settings({"latitude": "1", "longitude": "2"})))

    @pytest.mark.asyncio
    async def test_unexpected_body(self, http, upstream):
        upstream.add("/data/2.5/weather", json_response({"cod": 200}))
        with pytest.raises(UpstreamUnavailable):
            await WeatherSource(http).fetch(make_context(Settings(LOCATION_SETTINGS)))

    @pytest.mark.asyncio
    async def test_cached_for_thirty_minutes(self, http, upstream):
        upstream.add("/data/2.5/weather", json_response(OWM_BODY))
        source = WeatherSource(http)
        settings = Settings(LOCATION_SETTINGS)

        await source.fetch(make_context(settings))
        await source.fetch(make_context(settings, now_ms=T0_MS + 29 * 60_000))
        assert len(upstream.calls) == 1
        await source.fetch(make_context(settings, now_ms=T0_MS + 30 * 60_000))
        assert len(upstream.calls) == 2


# ---------------------------------------------------------------------------
# Astronomy
# ---------------------------------------------------------------------------

IPGEO_BODY = {
    "sunrise": "07:58",
    "sunset": "18:02",
    "moonrise": "23:10",
    "moonset": "06:45",
    "moon_phase": "WANING_GIBBOUS",
}


def at(hhmm: str) -> datetime:
    hour, minute = map(int, hhmm.split(":"))
    return datetime(2026, 10, 22, hour, minute, tzinfo=timezone.utc)


class TestAstronomyRules:
    def test_sun_after_sunset(self):
        assert sun_event("19:00", "07:58", "18:02") == (False, "18:02")

    def test_sun_before_sunset_shows_sunrise(self):
        assert sun_event("06:00", "07:58", "18:02") == (True, "07:58")
        assert sun_event("12:00", "07:58", "18:02") == (True, "07:58")

    def test_moon_rising_across_midnight(self):
        assert moon_event("20:00", "23:10", "06:45") == (True, "23:10")

    def test_moon_up_before_moonset(self):
        assert moon_event("05:00", "23:10", "06:45") == (False, "06:45")

    def test_moon_after_moonrise_overnight(self):
        assert moon_event("23:30", "23:10", "06:45") == (False, "06:45")

    def test_moon_normal_day(self):
        assert moon_event("08:00", "10:00", "22:00") == (True, "10:00")
        assert moon_event("12:00", "10:00", "22:00") == (False, "22:00")

    @pytest.mark.parametrize("label, index", [
        ("New Moon", 0),
        ("Waxing Crescent", 1),
        ("FIRST_QUARTER", 2),
        ("waxing gibbous", 3),
        ("Full Moon", 4),
        ("WANING_GIBBOUS", 5),
        ("Third Quarter", 6),
        ("Last Quarter", 6),
        ("Waning Crescent", 7),
        ("", 0),
        ("eclipse", 0),
    ])
    def test_moon_phase_index(self, label, index):
        assert moon_phase_index(label) == index


class TestAstronomySource:
    @pytest.mark.asyncio
    async def test_evening_report(self, http, upstream):
        upstream.add("/astronomy", json_response(IPGEO_BODY))
        source = AstronomySource(http)

        result = await source.fetch(make_context(Settings(LOCATION_SETTINGS), local_time=at("19:00")))

        assert result.sun_is_rising is False
        assert result.sun_event_time == "18:02"
        assert result.moon_is_rising is True
        assert result.moon_event_time == "23:10"
        assert result.moon_phase_index == 5
        params = upstream.calls[0].url.params
        assert params["apiKey"] == "ipgeo-key"
        assert params["long"] == "4.89"

    @pytest.mark.asyncio
    async def test_nested_astronomy_body(self, http, upstream):
        upstream.add("/astronomy", json_response({"location": {}, "astronomy": IPGEO_BODY}))
        result = await AstronomySource(http).fetch(
            make_context(Settings(LOCATION_SETTINGS), local_time=at("12:00"))
        )
        assert result.sun_event_time == "07:58"

    @pytest.mark.asyncio
    async def test_cached_times_are_reevaluated(self, http, upstream):
        upstream.add("/astronomy", json_response(IPGEO_BODY))
        source = AstronomySource(http)
        settings = Settings(LOCATION_SETTINGS)

        noon = await source.fetch(make_context(settings, local_time=at("12:00")))
        evening = await source.fetch(make_context(settings, now_ms=T0_MS + 3_600_000, local_time=at("19:00")))

        assert len(upstream.calls) == 1
        assert noon.sun_is_rising is True
        assert evening.sun_is_rising is False

    @pytest.mark.asyncio
    async def test_requires_location(self, http):
        with pytest.raises(NoLocation):
            await AstronomySource(http).fetch(make_context(Settings({"ipgeo_api_key": "k"})))

    @pytest.mark.asyncio
    async def test_missing_field(self, http, upstream):
        upstream.add("/astronomy", json_response({"sunrise": "07:58"}))
        with pytest.raises(UpstreamUnavailable):
            await AstronomySource(http).fetch(make_context(Settings(LOCATION_SETTINGS)))
