"""
Envelope framing — binary encode/decode of watch <-> phone messages.

Layout (all integers little-endian):

    outer header  kind u8 | version u8 | channel_id u16 | app_id u32 | payload_len u32
    inner header  trace_id u32 | parent_id u32 | span_id u32 | total_len u32 |
                  data_len u32 | payload_kind u8 | finished u8 | sent_at_ms u64 |
                  7 x reserved u32
    data          data_len bytes

payload_len covers the inner header plus data. Messages are never
fragmented, so finished is always 1 and total_len equals data_len.
Reserved slots are written as zero and ignored on read; new fields go in a
new protocol version.
"""

import json
import struct
import time
from typing import Any, Optional

from ratscout.errors import MalformedEnvelope, PayloadDecodeError, UnsupportedVersion
from ratscout.models.envelope import Envelope, MessageKind, PayloadKind

PROTOCOL_VERSION = 1
RESERVED_SLOTS = 7

OUTER_HEADER = struct.Struct("<BBHII")
INNER_HEADER = struct.Struct("<IIIIIBBQ" + "I" * RESERVED_SLOTS)
HEADER_SIZE = OUTER_HEADER.size + INNER_HEADER.size


def encode(envelope: Envelope) -> bytes:
    """Serialize an envelope. Pure: the send timestamp comes from the envelope."""
    data = envelope.payload
    outer = OUTER_HEADER.pack(
        envelope.kind,
        PROTOCOL_VERSION,
        envelope.channel_id,
        envelope.app_id,
        INNER_HEADER.size + len(data),
    )
    inner = INNER_HEADER.pack(
        envelope.trace_id,
        envelope.parent_id,
        envelope.span_id,
        len(data),
        len(data),
        envelope.payload_kind,
        1,
        envelope.sent_at_ms,
        *([0] * RESERVED_SLOTS),
    )
    return outer + inner + data


def decode(buf: bytes) -> Envelope:
    """Parse a buffer into an envelope.

    Raises MalformedEnvelope / UnsupportedVersion for framing problems and
    PayloadDecodeError (with the envelope attached) for a bad JSON payload.
    """
    if len(buf) < HEADER_SIZE:
        raise MalformedEnvelope(
            f"Buffer of {len(buf)} bytes is shorter than the {HEADER_SIZE}-byte header",
            {"length": len(buf)},
        )

    kind, version, channel_id, app_id, payload_len = OUTER_HEADER.unpack_from(buf, 0)
    if version != PROTOCOL_VERSION:
        raise UnsupportedVersion(version, PROTOCOL_VERSION)

    (trace_id, parent_id, span_id, total_len, data_len,
     payload_kind, finished, sent_at_ms, *_reserved) = INNER_HEADER.unpack_from(buf, OUTER_HEADER.size)

    remaining = len(buf) - HEADER_SIZE
    if data_len > remaining:
        raise MalformedEnvelope(
            f"Declared data length {data_len} exceeds remaining {remaining} bytes",
            {"data_len": data_len, "remaining": remaining},
        )
    if payload_len != INNER_HEADER.size + data_len or total_len != data_len:
        raise MalformedEnvelope(
            "Header lengths disagree",
            {"payload_len": payload_len, "total_len": total_len, "data_len": data_len},
        )
    if not finished:
        raise MalformedEnvelope("Fragmented messages are not supported")

    try:
        message_kind = MessageKind(kind)
        data_kind = PayloadKind(payload_kind)
    except ValueError as e:
        raise MalformedEnvelope(str(e)) from e

    envelope = Envelope(
        kind=message_kind,
        channel_id=channel_id,
        app_id=app_id,
        trace_id=trace_id,
        parent_id=parent_id,
        span_id=span_id,
        payload_kind=data_kind,
        payload=bytes(buf[HEADER_SIZE:HEADER_SIZE + data_len]),
        sent_at_ms=sent_at_ms,
    )

    if data_kind == PayloadKind.JSON and envelope.payload:
        try:
            parsed = envelope.json_payload()
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PayloadDecodeError(f"Invalid JSON payload: {e}", envelope) from e
        if not isinstance(parsed, dict):
            raise PayloadDecodeError("JSON payload is not an object", envelope)

    return envelope


def build_envelope(
    kind: MessageKind,
    data: Optional[dict[str, Any]] = None,
    *,
    channel_id: int = 0,
    app_id: int = 0,
    trace_id: int = 0,
    span_id: int = 0,
    payload: Optional[bytes] = None,
) -> Envelope:
    """Build an envelope stamped with the current time.

    ``data`` is serialized as a JSON payload; ``payload`` is sent as raw
    binary instead.
    """
    if payload is not None:
        body, payload_kind = payload, PayloadKind.BINARY
    elif data is not None:
        body, payload_kind = json.dumps(data, separators=(",", ":")).encode("utf-8"), PayloadKind.JSON
    else:
        body, payload_kind = b"", PayloadKind.BINARY
    return Envelope(
        kind=kind,
        channel_id=channel_id,
        app_id=app_id,
        trace_id=trace_id,
        span_id=span_id,
        payload_kind=payload_kind,
        payload=body,
        sent_at_ms=int(time.time() * 1000),
    )
