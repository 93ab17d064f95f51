"""
PeripheralSyncClient — watch-side synchronisation with the phone.

States: DISCONNECTED -> HANDSHAKING -> READY -> AWAITING_RESPONSE, and back
to READY when the response arrives or the response window expires. Only
one request is ever outstanding. A handshake left unanswered for the same
window drops back to DISCONNECTED.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from ratscout.display import DisplayState
from ratscout.errors import LinkClosed, PayloadDecodeError, ProtocolError, SyncTimeout
from ratscout.models.envelope import Envelope, MessageKind, PayloadKind
from ratscout.models.snapshot import Snapshot
from ratscout.transport.envelope import build_envelope, decode, encode
from ratscout.transport.link import TransportLink

logger = logging.getLogger("ratscout.client")

DEFAULT_RESPONSE_TIMEOUT_S = 60.0


class SyncState(str, Enum):
    DISCONNECTED = "disconnected"
    HANDSHAKING = "handshaking"
    READY = "ready"
    AWAITING_RESPONSE = "awaiting_response"


class PeripheralSyncClient:
    def __init__(
        self,
        link: TransportLink,
        app_id: int,
        display: Optional[DisplayState] = None,
        response_timeout_s: float = DEFAULT_RESPONSE_TIMEOUT_S,
    ):
        self._link = link
        self._app_id = app_id
        self._display = display or DisplayState()
        self._response_timeout_s = response_timeout_s
        self._state = SyncState.DISCONNECTED
        self._channel_id = 0
        self._last_trace = 0
        self._span = 0
        self._pending_trace: Optional[int] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._settled = asyncio.Event()
        self._bound = False

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def channel_id(self) -> int:
        return self._channel_id

    @property
    def pending_trace_id(self) -> Optional[int]:
        return self._pending_trace

    @property
    def display(self) -> DisplayState:
        return self._display

    async def start(self) -> None:
        """Bind the link and send the handshake.

        While still handshaking, calling this again resends the handshake;
        the ack for an earlier one may have been lost.
        """
        if self._state not in (SyncState.DISCONNECTED, SyncState.HANDSHAKING):
            return
        if not self._bound:
            self._link.bind(self._on_message)
            self._bound = True
        self._state = SyncState.HANDSHAKING
        self._settled.clear()
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().call_later(self._response_timeout_s, self._on_handshake_timeout)
        await self._send(build_envelope(
            MessageKind.HANDSHAKE,
            channel_id=0,
            app_id=self._app_id,
            span_id=self._next_span(),
            payload=bytes([self._app_id & 0xFF]),
        ))

    async def request_fetch_all(self) -> Optional[int]:
        """Send a fetchAll request. Returns its trace id, or None if not READY."""
        if self._state != SyncState.READY:
            logger.debug("Not requesting in state %s", self._state.value)
            return None
        self._last_trace = self._last_trace % 0xFFFFFFFF + 1
        trace_id = self._last_trace
        self._pending_trace = trace_id
        self._state = SyncState.AWAITING_RESPONSE
        self._settled.clear()
        self._timer = asyncio.get_running_loop().call_later(
            self._response_timeout_s, self._on_timeout, trace_id,
        )
        try:
            await self._send(build_envelope(
                MessageKind.REQUEST,
                {"action": "fetchAll"},
                channel_id=self._channel_id,
                app_id=self._app_id,
                trace_id=trace_id,
                span_id=self._next_span(),
            ))
        except LinkClosed:
            logger.warning("Link closed before request %d was sent", trace_id)
            self._settle()
            return None
        return trace_id

    def apply_snapshot(self, snapshot: Snapshot) -> None:
        """Apply a full or partial snapshot; absent sections stay unchanged."""
        self._display.apply(snapshot)

    async def wait_until_settled(self, timeout: Optional[float] = None) -> None:
        """Wait until no request is outstanding (response or expiry)."""
        try:
            await asyncio.wait_for(self._settled.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise SyncTimeout(f"Sync did not settle within {timeout}s (state {self._state.value})")

    async def sync_once(self, timeout: Optional[float] = None) -> DisplayState:
        """Handshake if needed (which requests automatically), else request; then wait."""
        if self._state in (SyncState.DISCONNECTED, SyncState.HANDSHAKING):
            await self.start()
        else:
            await self.request_fetch_all()
        await self.wait_until_settled(timeout)
        return self._display

    async def close(self) -> None:
        """Drop pending state and release the link. No callback fires afterwards."""
        self._state = SyncState.DISCONNECTED
        self._cancel_timer()
        self._pending_trace = None
        self._channel_id = 0
        if self._bound:
            self._link.unbind()
            self._bound = False
        self._settled.set()

    async def _on_message(self, data: bytes) -> None:
        if self._state == SyncState.DISCONNECTED:
            return
        try:
            envelope = decode(data)
        except PayloadDecodeError as e:
            logger.warning("Dropping %s (trace %d) with undecodable payload: %s",
                           e.envelope.kind.name if e.envelope else "envelope",
                           e.envelope.trace_id if e.envelope else 0, e)
            return
        except ProtocolError as e:
            logger.warning("Dropping inbound buffer [%s]: %s", e.code, e)
            return

        if envelope.kind == MessageKind.HANDSHAKE_ACK:
            await self._on_handshake_ack(envelope)
        elif envelope.kind == MessageKind.PUSH:
            if self._state in (SyncState.READY, SyncState.AWAITING_RESPONSE):
                self._apply_payload(envelope)
        elif envelope.kind == MessageKind.RESPONSE:
            if self._pending_trace is None or envelope.trace_id != self._pending_trace:
                logger.debug("Ignoring response for unknown trace %d", envelope.trace_id)
                return
            self._apply_payload(envelope)
            self._settle()
        else:
            logger.debug("Ignoring %s from host", envelope.kind.name)

    async def _on_handshake_ack(self, envelope: Envelope) -> None:
        if self._state != SyncState.HANDSHAKING:
            logger.debug("Ignoring handshake ack in state %s", self._state.value)
            return
        self._cancel_timer()
        self._channel_id = envelope.channel_id
        self._state = SyncState.READY
        logger.info("Handshake complete on channel %d", self._channel_id)
        await self.request_fetch_all()

    def _apply_payload(self, envelope: Envelope) -> None:
        if envelope.payload_kind != PayloadKind.JSON:
            logger.debug("Ignoring non-JSON %s payload", envelope.kind.name)
            return
        data = envelope.json_payload()
        if "error" in data:
            logger.warning("Host reported error for trace %d: %s", envelope.trace_id, data["error"])
            return
        try:
            snapshot = Snapshot.from_payload(data)
        except ValueError as e:
            logger.warning("Ignoring invalid snapshot in %s: %s", envelope.kind.name, e)
            return
        self.apply_snapshot(snapshot)

    def _on_timeout(self, trace_id: int) -> None:
        if self._pending_trace != trace_id:
            return
        logger.info("No response for trace %d within %.0fs; keeping last values", trace_id, self._response_timeout_s)
        self._settle()

    def _on_handshake_timeout(self) -> None:
        self._timer = None
        if self._state != SyncState.HANDSHAKING:
            return
        logger.info("No handshake ack within %.0fs; will handshake again", self._response_timeout_s)
        self._state = SyncState.DISCONNECTED
        self._settled.set()

    def _settle(self) -> None:
        self._cancel_timer()
        self._pending_trace = None
        if self._state != SyncState.DISCONNECTED:
            self._state = SyncState.READY
        self._settled.set()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _next_span(self) -> int:
        self._span = (self._span + 1) & 0xFFFFFFFF
        return self._span

    async def _send(self, envelope: Envelope) -> None:
        await self._link.send(encode(envelope))
