"""
Aggregator — phone-side orchestration of the upstream sources.

Aggregation never fails as a whole:
- each source runs concurrently under its own timeout;
- a timed-out fetch keeps running (shielded) and fills the cache for the next request;
- any source error becomes an absent snapshot section.

HostService binds the phone end of a transport link and answers the
watch's handshake and fetch requests.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from ratscout.auth import SessionManager
from ratscout.errors import AuthExpired, FetchError, LinkClosed, NoCredentials, NoLocation, ProtocolError
from ratscout.models.envelope import Envelope, MessageKind, PayloadKind
from ratscout.models.snapshot import Snapshot
from ratscout.settings import Settings
from ratscout.sources.astronomy import AstronomySource
from ratscout.sources.base import FetchContext, UpstreamSource
from ratscout.sources.glucose import GlucoseSource
from ratscout.sources.schedule import ScheduleDeriver
from ratscout.sources.weather import WeatherSource
from ratscout.transport.envelope import build_envelope, decode, encode
from ratscout.transport.http import HttpClient
from ratscout.transport.link import TransportLink

logger = logging.getLogger("ratscout.aggregator")

DEFAULT_SOURCE_TIMEOUT_S = 20.0
FETCH_ALL = "fetchAll"

# Errors meaning "not configured" rather than "broken"
UNAVAILABLE_ERRORS = (NoCredentials, NoLocation)


class Aggregator:
    def __init__(
        self,
        glucose: GlucoseSource,
        weather: WeatherSource,
        astronomy: AstronomySource,
        settings: Settings,
        schedule: Optional[ScheduleDeriver] = None,
        source_timeout_s: float = DEFAULT_SOURCE_TIMEOUT_S,
    ):
        self._glucose = glucose
        self._weather = weather
        self._astronomy = astronomy
        self._schedule = schedule or ScheduleDeriver()
        self._settings = settings
        self._source_timeout_s = source_timeout_s

    @classmethod
    def create(cls, settings: Settings, http: HttpClient, **kwargs: Any) -> "Aggregator":
        """Wire the three upstream sources around one shared HTTP client."""
        return cls(
            glucose=GlucoseSource(http, SessionManager(http)),
            weather=WeatherSource(http),
            astronomy=AstronomySource(http),
            settings=settings,
            **kwargs,
        )

    async def collect(self, context: Optional[FetchContext] = None) -> Snapshot:
        ctx = context or FetchContext.capture(self._settings)
        glucose, weather, astronomy = await asyncio.gather(
            self._fetch_one(self._glucose, ctx),
            self._fetch_one(self._weather, ctx),
            self._fetch_one(self._astronomy, ctx),
        )
        try:
            schedule = self._schedule.derive(ctx)
        except Exception:
            logger.exception("Schedule derivation failed")
            schedule = None
        snapshot = Snapshot(glucose=glucose, weather=weather, astronomy=astronomy, schedule=schedule)
        logger.info("Snapshot assembled with sections: %s", ", ".join(snapshot.present_sections()) or "none")
        return snapshot

    async def _fetch_one(self, source: UpstreamSource[Any, Any], ctx: FetchContext) -> Any:
        """Fetch one section; every failure is logged and becomes None."""
        task = asyncio.ensure_future(source.fetch(ctx))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self._source_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("%s fetch timed out after %.1fs", source.name, self._source_timeout_s)
            task.add_done_callback(_late_result_logger(source.name))
        except UNAVAILABLE_ERRORS as e:
            logger.info("%s unavailable: %s", source.name, e)
        except AuthExpired as e:
            # The source already retried once with a fresh login.
            logger.warning("%s: auth still failing after re-login: %s", source.name, e)
        except FetchError as e:
            logger.warning("%s fetch failed [%s]: %s", source.name, e.code, e)
        except Exception:
            logger.exception("%s fetch raised unexpectedly", source.name)
        return None


def _late_result_logger(name: str) -> Callable[["asyncio.Future[Any]"], None]:
    def done(task: "asyncio.Future[Any]") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.info("%s late fetch failed: %s", name, error)
        else:
            logger.info("%s late fetch completed; cached for next request", name)
    return done


class HostService:
    """Phone end of the link: handshakes and fetch requests from the watch."""

    def __init__(self, link: TransportLink, aggregator: Aggregator):
        self._link = link
        self._aggregator = aggregator
        self._next_channel = 1
        self._span = 0
        self._app_id = 0
        self._channel_id = 0
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def channel_id(self) -> int:
        return self._channel_id

    def start(self) -> None:
        self._link.bind(self._on_message)

    def stop(self) -> None:
        self._link.unbind()

    async def wait_idle(self) -> None:
        """Wait for in-flight request handlers to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _on_message(self, data: bytes) -> None:
        try:
            envelope = decode(data)
        except ProtocolError as e:
            logger.warning("Dropping inbound buffer [%s]: %s", e.code, e)
            return

        if envelope.kind == MessageKind.HANDSHAKE:
            await self._accept_handshake(envelope)
        elif envelope.kind == MessageKind.REQUEST:
            task = asyncio.get_running_loop().create_task(self._answer(envelope))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            logger.debug("Ignoring %s from peripheral", envelope.kind.name)

    async def _accept_handshake(self, envelope: Envelope) -> None:
        self._app_id = envelope.app_id
        self._channel_id = self._next_channel
        self._next_channel = self._next_channel % 0xFFFF + 1
        logger.info("Handshake from app %d, assigned channel %d", self._app_id, self._channel_id)
        await self._send(build_envelope(
            MessageKind.HANDSHAKE_ACK,
            channel_id=self._channel_id,
            app_id=self._app_id,
            trace_id=envelope.trace_id,
            span_id=self._next_span(),
        ))

    async def _answer(self, request: Envelope) -> None:
        action = request.json_payload().get("action") if request.payload_kind == PayloadKind.JSON else None
        if action == FETCH_ALL:
            body = (await self._aggregator.collect()).to_payload()
        else:
            logger.warning("Unknown action %r in request %d", action, request.trace_id)
            body = {"error": "unknown action"}
        await self._send(build_envelope(
            MessageKind.RESPONSE,
            body,
            channel_id=request.channel_id,
            app_id=request.app_id,
            trace_id=request.trace_id,
            span_id=self._next_span(),
        ))

    async def push(self, snapshot: Snapshot) -> None:
        """Send an unsolicited (partial) snapshot to the watch."""
        await self._send(build_envelope(
            MessageKind.PUSH,
            snapshot.to_payload(),
            channel_id=self._channel_id,
            app_id=self._app_id,
            span_id=self._next_span(),
        ))

    def _next_span(self) -> int:
        self._span = (self._span + 1) & 0xFFFFFFFF
        return self._span

    async def _send(self, envelope: Envelope) -> None:
        try:
            await self._link.send(encode(envelope))
        except LinkClosed:
            logger.warning("Link closed; %s for trace %d not delivered", envelope.kind.name, envelope.trace_id)
