"""
Dexcom Share session models.
"""

from enum import Enum

from pydantic import BaseModel


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    AUTHENTICATING = "authenticating"
    ACTIVE = "active"


class Session(BaseModel):
    token: str
    created_at_ms: int
