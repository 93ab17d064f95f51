"""
Wire envelope model — one framed message exchanged over a transport link.
"""

import json
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, Field


class MessageKind(IntEnum):
    HANDSHAKE = 1
    HANDSHAKE_ACK = 2
    REQUEST = 3
    PUSH = 4
    RESPONSE = 5


class PayloadKind(IntEnum):
    BINARY = 0
    JSON = 1


class Envelope(BaseModel):
    kind: MessageKind
    channel_id: int = Field(default=0, ge=0, le=0xFFFF)   # 0 until HandshakeAck
    app_id: int = Field(default=0, ge=0, le=0xFFFFFFFF)
    trace_id: int = Field(default=0, ge=0, le=0xFFFFFFFF)
    parent_id: int = Field(default=0, ge=0, le=0xFFFFFFFF)
    span_id: int = Field(default=0, ge=0, le=0xFFFFFFFF)
    payload_kind: PayloadKind = PayloadKind.JSON
    payload: bytes = b""
    sent_at_ms: int = Field(default=0, ge=0)

    def json_payload(self) -> dict[str, Any]:
        """Parsed JSON payload. Empty payloads read as an empty object."""
        if not self.payload:
            return {}
        return json.loads(self.payload.decode("utf-8"))
