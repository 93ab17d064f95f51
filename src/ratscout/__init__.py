"""
ratscout — watch/phone data sync for the Rat Scout watchface.

Binary envelope protocol between watch and phone, plus the phone-side
aggregator for Dexcom Share glucose, OpenWeatherMap weather and
ipgeolocation astronomy.
"""

from ratscout.aggregator import Aggregator, HostService
from ratscout.auth import SessionManager
from ratscout.client import PeripheralSyncClient, SyncState
from ratscout.display import DisplayState
from ratscout.errors import (
    AuthExpired,
    FetchError,
    LoginFailed,
    MalformedEnvelope,
    NoCredentials,
    NoLocation,
    PayloadDecodeError,
    RatScoutError,
    SyncTimeout,
    UnsupportedVersion,
    UpstreamUnavailable,
)
from ratscout.models.envelope import Envelope, MessageKind, PayloadKind
from ratscout.models.snapshot import Snapshot
from ratscout.settings import Settings
from ratscout.transport.link import LoopbackLink, TransportLink

__version__ = "0.1.0"
__all__ = [
    "Aggregator",
    "HostService",
    "SessionManager",
    "PeripheralSyncClient",
    "SyncState",
    "DisplayState",
    "Envelope",
    "MessageKind",
    "PayloadKind",
    "Snapshot",
    "Settings",
    "TransportLink",
    "LoopbackLink",
    "RatScoutError",
    "MalformedEnvelope",
    "UnsupportedVersion",
    "PayloadDecodeError",
    "FetchError",
    "NoCredentials",
    "NoLocation",
    "AuthExpired",
    "LoginFailed",
    "UpstreamUnavailable",
    "SyncTimeout",
]
