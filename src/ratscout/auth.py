"""
Dexcom Share session management.

A session id is obtained by logging in with the publisher account. Its
lifetime is not known locally: the readings endpoint reports an expired
session and the caller invalidates it, so the next token() logs in again.
"""

import asyncio
import logging
from typing import Optional

from ratscout.errors import HttpStatusError, LoginFailed, NoCredentials, UpstreamUnavailable
from ratscout.models.session import Session, SessionState
from ratscout.settings import Settings
from ratscout.transport.http import HttpClient

logger = logging.getLogger("ratscout.auth")

DEXCOM_US_BASE = "https://share2.dexcom.com/ShareWebServices/Services"
DEXCOM_OUS_BASE = "https://shareous1.dexcom.com/ShareWebServices/Services"
DEXCOM_JP_BASE = "https://shareous1.dexcom.com/ShareWebServices/Services"

DEXCOM_APPLICATION_ID = "d89443d2-327c-4a6f-89e5-496bbb0317db"
# Dexcom answers 200 with this id when the password is wrong.
NULL_SESSION_ID = "00000000-0000-0000-0000-000000000000"


def dexcom_base(region: str) -> str:
    if region == "ous":
        return DEXCOM_OUS_BASE
    if region == "jp":
        return DEXCOM_JP_BASE
    return DEXCOM_US_BASE


class SessionManager:
    def __init__(self, http: HttpClient):
        self._http = http
        self._session: Optional[Session] = None
        self._login: Optional[asyncio.Task[Session]] = None
        self.login_count = 0

    @property
    def state(self) -> SessionState:
        if self._session is not None:
            return SessionState.ACTIVE
        if self._login is not None and not self._login.done():
            return SessionState.AUTHENTICATING
        return SessionState.NO_SESSION

    @property
    def session(self) -> Optional[Session]:
        return self._session

    async def token(self, settings: Settings, now_ms: int) -> str:
        """Return the active session id, logging in first if needed.

        Concurrent callers share one in-flight login.
        """
        if self._session is not None:
            return self._session.token
        if self._login is None or self._login.done():
            username = settings.get("dexcom_username")
            password = settings.get("dexcom_password")
            if not username or not password:
                raise NoCredentials("Dexcom username/password not configured")
            self._login = asyncio.ensure_future(
                self._authenticate(username, password, settings.get("dexcom_region"), now_ms)
            )
        session = await asyncio.shield(self._login)
        return session.token

    def invalidate(self, token: Optional[str] = None) -> None:
        """Drop the session after an auth failure.

        With ``token`` given, only that session is dropped, so a caller
        holding an old token cannot discard a newer login.
        """
        if self._session is None:
            return
        if token is not None and self._session.token != token:
            return
        logger.info("Dexcom session invalidated")
        self._session = None

    async def _authenticate(self, username: str, password: str, region: str, now_ms: int) -> Session:
        self.login_count += 1
        logger.info("Dexcom: logging in (%s region)", region)
        try:
            result = await self._http.post(
                dexcom_base(region) + "/General/LoginPublisherAccountById",
                {
                    "accountName": username,
                    "password": password,
                    "applicationId": DEXCOM_APPLICATION_ID,
                },
            )
        except HttpStatusError as e:
            raise LoginFailed(f"Dexcom login rejected: HTTP {e.status_code}", {"status": e.status_code}) from e
        except UpstreamUnavailable as e:
            raise LoginFailed(f"Dexcom login failed: {e}") from e

        token = str(result).strip('"') if result else ""
        if not token or token == NULL_SESSION_ID:
            raise LoginFailed("Dexcom login returned no session id")
        session = Session(token=token, created_at_ms=now_ms)
        self._session = session
        return session

    async def close(self) -> None:
        if self._login is not None and not self._login.done():
            self._login.cancel()
        self._login = None
        self._session = None
