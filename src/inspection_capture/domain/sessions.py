"""Domain models for signed-in sessions and the per-account login lock."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class SessionState(StrEnum):
    """Lifecycle of the local session."""

    SIGNED_OUT = "signed_out"
    SIGNING_IN = "signing_in"
    SIGNED_IN = "signed_in"


class LogoutReason(StrEnum):
    """Why the last session ended."""

    VOLUNTARY = "voluntary"
    SUPERSEDED = "superseded"
    IDLE = "idle"


@dataclass(frozen=True)
class AuthIdentity:
    """Account returned by the auth backend after a credential check."""

    account_id: str
    email: str


@dataclass(frozen=True)
class Session:
    """A signed-in session holding the locally generated lock token."""

    account_id: str
    session_token: str
    created_at: datetime
    username: str
    is_admin: bool = False


@dataclass(frozen=True)
class SessionLockRecord:
    """Remote row naming the session token currently authoritative for an account."""

    account_id: str
    session_token: str
    updated_at: datetime | None = None


@dataclass(frozen=True)
class LogoutEvent:
    """Published to subscribers whenever a session ends."""

    account_id: str
    reason: LogoutReason
    clear_draft: bool
