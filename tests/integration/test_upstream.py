"""
Integration tests for ratscout — tests against the real upstream services.

Requires environment variables:
  RATSCOUT_DEXCOM_USERNAME / RATSCOUT_DEXCOM_PASSWORD  — Dexcom Share account
  RATSCOUT_DEXCOM_REGION   — (optional) us | ous | jp, defaults to us
  RATSCOUT_OWM_API_KEY     — OpenWeatherMap key
  RATSCOUT_IPGEO_API_KEY   — ipgeolocation.io key
  RATSCOUT_LATITUDE / RATSCOUT_LONGITUDE — (optional) defaults to Amsterdam

Run: RATSCOUT_INTEGRATION=1 pytest tests/integration/ -v
"""

import os

import pytest
import pytest_asyncio

from ratscout import Aggregator, Settings
from ratscout.auth import SessionManager
from ratscout.sources.astronomy import AstronomySource
from ratscout.sources.base import FetchContext
from ratscout.sources.glucose import GlucoseSource
from ratscout.sources.weather import WeatherSource
from ratscout.transport.http import HttpClient

SKIP = not os.environ.get("RATSCOUT_INTEGRATION")

SETTINGS = Settings({
    "dexcom_username": os.environ.get("RATSCOUT_DEXCOM_USERNAME", ""),
    "dexcom_password": os.environ.get("RATSCOUT_DEXCOM_PASSWORD", ""),
    "dexcom_region": os.environ.get("RATSCOUT_DEXCOM_REGION", "us"),
    "owm_api_key": os.environ.get("RATSCOUT_OWM_API_KEY", ""),
    "ipgeo_api_key": os.environ.get("RATSCOUT_IPGEO_API_KEY", ""),
    "latitude": os.environ.get("RATSCOUT_LATITUDE", "52.37"),
    "longitude": os.environ.get("RATSCOUT_LONGITUDE", "4.89"),
})

pytestmark = pytest.mark.skipif(SKIP, reason="RATSCOUT_INTEGRATION not set")


@pytest_asyncio.fixture
async def http():
    client = HttpClient()
    yield client
    await client.close()


class TestGlucose:
    @pytest.mark.asyncio
    @pytest.mark.skipif(not SETTINGS.get("dexcom_password"), reason="Dexcom credentials not set")
    async def test_latest_reading(self, http):
        sessions = SessionManager(http)
        reading = await GlucoseSource(http, sessions).fetch(FetchContext.capture(SETTINGS))
        assert reading.value
        assert reading.age_minutes is not None
        assert sessions.login_count == 1


class TestWeather:
    @pytest.mark.asyncio
    @pytest.mark.skipif(not SETTINGS.get("owm_api_key"), reason="OpenWeatherMap key not set")
    async def test_current_conditions(self, http):
        report = await WeatherSource(http).fetch(FetchContext.capture(SETTINGS))
        assert report.temperature_unit == "C"
        assert -80 < report.temperature < 60


class TestAstronomy:
    @pytest.mark.asyncio
    @pytest.mark.skipif(not SETTINGS.get("ipgeo_api_key"), reason="ipgeolocation key not set")
    async def test_sun_and_moon(self, http):
        report = await AstronomySource(http).fetch(FetchContext.capture(SETTINGS))
        assert len(report.sun_event_time) == 5
        assert 0 <= report.moon_phase_index <= 7


class TestAggregator:
    @pytest.mark.asyncio
    async def test_collect_never_raises(self, http):
        snapshot = await Aggregator.create(SETTINGS, http).collect()
        assert snapshot.to_payload()["type"] == "all"
