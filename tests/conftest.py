"""Shared fixtures: settings, fetch contexts and mocked upstream HTTP."""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx
import pytest

from ratscout.aggregator import Aggregator
from ratscout.models.snapshot import AstronomyReport, GlucoseReading, WeatherReport
from ratscout.settings import Settings
from ratscout.sources.base import FetchContext, UpstreamSource
from ratscout.transport.http import HttpClient

# Thursday 2026-10-22 19:00 UTC
T0_MS = 1_792_695_600_000
T0_LOCAL = datetime(2026, 10, 22, 19, 0, tzinfo=timezone.utc)

DEXCOM_SETTINGS = {"dexcom_username": "rat", "dexcom_password": "scout", "dexcom_region": "us"}
LOCATION_SETTINGS = {"latitude": "52.37", "longitude": "4.89", "owm_api_key": "owm-key", "ipgeo_api_key": "ipgeo-key"}


def make_context(settings: Settings, now_ms: int = T0_MS, local_time: datetime = T0_LOCAL) -> FetchContext:
    return FetchContext(settings=settings, now_ms=now_ms, local_time=local_time)


@pytest.fixture
def context_factory() -> Callable[..., FetchContext]:
    return make_context


@pytest.fixture
def full_settings() -> Settings:
    return Settings({**DEXCOM_SETTINGS, **LOCATION_SETTINGS})


class UpstreamRecorder:
    """Routes mocked requests by URL path suffix and records every call."""

    def __init__(self) -> None:
        self.routes: dict[str, list[Any]] = {}
        self.calls: list[httpx.Request] = []

    def add(self, path_suffix: str, *responses: Any) -> None:
        """Queue responses for a path. The last one repeats once the queue runs dry."""
        self.routes[path_suffix] = list(responses)

    def count(self, path_suffix: str) -> int:
        return sum(1 for r in self.calls if r.url.path.endswith(path_suffix))

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        for suffix, responses in self.routes.items():
            if request.url.path.endswith(suffix):
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                if callable(response):
                    response = await response(request)
                return response
        return httpx.Response(404, text="no route")


@pytest.fixture
def upstream() -> UpstreamRecorder:
    return UpstreamRecorder()


@pytest.fixture
def http(upstream: UpstreamRecorder) -> HttpClient:
    return HttpClient(transport=httpx.MockTransport(upstream))


def json_response(data: Any, status: int = 200) -> httpx.Response:
    return httpx.Response(status, content=json.dumps(data).encode(), headers={"Content-Type": "application/json"})


@pytest.fixture
def settle() -> Callable[..., Any]:
    """Let queued link deliveries and the tasks they start run."""

    async def _settle(rounds: int = 20) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle


# ---------------------------------------------------------------------------
# Stub sources for aggregator and link tests
# ---------------------------------------------------------------------------

GLUCOSE = GlucoseReading(value="120", delta="+5", age_minutes=3, trend="Flat")
WEATHER = WeatherReport(temperature=22, temperature_unit="C", wind=3, wind_unit="m/s", has_rain=False)
ASTRONOMY = AstronomyReport(sun_event_time="18:02", sun_is_rising=False, moon_event_time="23:10", moon_phase_index=5)


class StubSource(UpstreamSource[Any, Any]):
    """Returns a fixed section or raises a fixed error."""

    def __init__(self, name: str, result: Any = None, error: Optional[Exception] = None, delay: float = 0.0):
        super().__init__(http=None)
        self.name = name
        self._result = result
        self._error = error
        self._delay = delay
        self.calls = 0

    async def _fetch_upstream(self, context: FetchContext) -> Any:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._result

    def present(self, raw: Any, context: FetchContext) -> Any:
        return raw


def stub_aggregator(glucose=None, weather=None, astronomy=None, settings=None, **kwargs: Any) -> Aggregator:
    return Aggregator(
        glucose=glucose or StubSource("glucose", GLUCOSE),
        weather=weather or StubSource("weather", WEATHER),
        astronomy=astronomy or StubSource("astronomy", ASTRONOMY),
        settings=settings or Settings(),
        **kwargs,
    )
