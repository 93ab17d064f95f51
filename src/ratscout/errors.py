"""
Rat Scout error types.

Protocol errors are dropped by the receiving side of a link; fetch errors
are turned into absent snapshot fields by the aggregator.
"""

from typing import Any, Optional


class RatScoutError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


# Protocol layer

class ProtocolError(RatScoutError):
    pass


class MalformedEnvelope(ProtocolError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("malformed_envelope", message, details)


class UnsupportedVersion(ProtocolError):
    def __init__(self, version: int, expected: int):
        super().__init__(
            "unsupported_version",
            f"Unsupported protocol version {version} (expected {expected})",
            {"version": version, "expected": expected},
        )
        self.version = version


class PayloadDecodeError(ProtocolError):
    """The envelope framing was valid but its JSON payload was not."""

    def __init__(self, message: str, envelope: Any = None):
        super().__init__("payload_decode_error", message)
        self.envelope = envelope


# Link layer

class LinkError(RatScoutError):
    pass


class LinkBusy(LinkError):
    def __init__(self, message: str = "Link already has a bound handler"):
        super().__init__("link_busy", message)


class LinkClosed(LinkError):
    def __init__(self, message: str = "Link is closed"):
        super().__init__("link_closed", message)


# Data layer

class FetchError(RatScoutError):
    pass


class NoCredentials(FetchError):
    def __init__(self, message: str = "No credentials configured"):
        super().__init__("no_credentials", message)


class NoLocation(FetchError):
    def __init__(self, message: str = "No location configured"):
        super().__init__("no_location", message)


class AuthExpired(FetchError):
    def __init__(self, message: str = "Upstream session expired"):
        super().__init__("auth_expired", message)


class LoginFailed(FetchError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("login_failed", message, details)


class UpstreamUnavailable(FetchError):
    def __init__(self, message: str, code: str = "upstream_unavailable", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class HttpStatusError(UpstreamUnavailable):
    def __init__(self, status_code: int, body: str = ""):
        super().__init__(
            f"HTTP {status_code}: {body}",
            code="http_error",
            details={"status": status_code, "body": body},
        )
        self.status_code = status_code
        self.body = body


# Cross-cutting

class SyncTimeout(RatScoutError):
    def __init__(self, message: str):
        super().__init__("timeout", message)
