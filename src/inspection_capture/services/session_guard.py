"""Single-active-session enforcement and inactivity logout.

The remote lock row is treated as an eventually consistent broadcast of
which session currently holds the account, never as a mutex. Signing in
blindly upserts a fresh token; every signed-in client polls the row and
signs itself out once it is sure a newer token has replaced its own.
Because a poll can read a replica that has not yet seen our own write, a
mismatch shortly after sign-in only triggers one re-assertion of our token.
"""

import asyncio
import logging
import secrets
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from inspection_capture.domain.errors import AuthError, AuthErrorReason
from inspection_capture.domain.sessions import (
    AuthIdentity,
    LogoutEvent,
    LogoutReason,
    Session,
    SessionLockRecord,
    SessionState,
)
from inspection_capture.services.audit import AuditService

logger = logging.getLogger(__name__)

LogoutListener = Callable[[LogoutEvent], Awaitable[None]]


class AuthGateway(Protocol):
    """Credential check against the remote account store."""

    def sign_in(self, email: str, password: str) -> AuthIdentity:
        """Verify credentials, raising AuthError on refusal or network failure."""

    def sign_out(self) -> None:
        """End the remote auth session."""


class SessionLockRepository(Protocol):
    """Persistence interface for the per-account login lock row."""

    def upsert_lock(self, account_id: str, session_token: str) -> None:
        """Write the token as the account's current session (last writer wins)."""

    def get_lock(self, account_id: str) -> SessionLockRecord | None:
        """Return the lock row for an account, if present."""


def _new_token() -> str:
    return secrets.token_urlsafe(24)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class SessionGuard:
    """Owns sign-in, supersession detection and idle logout for one client."""

    auth_gateway: AuthGateway
    lock_repository: SessionLockRepository
    audit_service: AuditService | None = None
    admin_usernames: frozenset[str] = frozenset({"admin"})
    email_domain: str = "local.com"
    poll_interval_seconds: float = 3.0
    grace_seconds: float = 6.0
    idle_timeout_seconds: float = 300.0
    idle_check_interval_seconds: float = 30.0
    background_monitoring: bool = True
    clock: Callable[[], float] = time.monotonic
    wall_clock: Callable[[], datetime] = _utcnow
    token_factory: Callable[[], str] = _new_token

    _state: SessionState = field(default=SessionState.SIGNED_OUT, init=False)
    _session: Session | None = field(default=None, init=False)
    _signed_in_at: float = field(default=0.0, init=False)
    _last_activity: float = field(default=0.0, init=False)
    _reasserted: bool = field(default=False, init=False)
    _logout_reason: LogoutReason | None = field(default=None, init=False)
    _listeners: list[LogoutListener] = field(default_factory=list, init=False)
    _tasks: list[asyncio.Task[None]] = field(default_factory=list, init=False)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def is_signed_in(self) -> bool:
        return self._state is SessionState.SIGNED_IN and self._session is not None

    @property
    def is_admin(self) -> bool:
        return self._session.is_admin if self._session else False

    @property
    def username(self) -> str:
        return self._session.username if self._session else ""

    @property
    def logout_reason(self) -> LogoutReason | None:
        return self._logout_reason

    @property
    def logout_message(self) -> str:
        """User-facing explanation for the last forced logout."""
        if self._logout_reason is LogoutReason.SUPERSEDED:
            return "This account was signed in on another device."
        if self._logout_reason is LogoutReason.IDLE:
            minutes = round(self.idle_timeout_seconds / 60)
            return f"Signed out after {minutes} minutes of inactivity."
        return ""

    def subscribe(self, listener: LogoutListener) -> None:
        """Register a coroutine called after every logout."""
        self._listeners.append(listener)

    async def sign_in(self, username: str, password: str) -> Session:
        """Check credentials, claim the account lock and start monitoring."""
        if self._state is SessionState.SIGNING_IN:
            raise AuthError(AuthErrorReason.SIGN_IN_IN_PROGRESS)
        trimmed = username.strip()
        if not trimmed or not password:
            raise AuthError(
                AuthErrorReason.INVALID_CREDENTIALS,
                "Enter both username and password.",
            )

        # state must flip before the first await so a second call is refused
        try:
            if self.is_signed_in:
                await self._end_session(
                    LogoutReason.VOLUNTARY,
                    clear_draft=False,
                    next_state=SessionState.SIGNING_IN,
                )
            else:
                self._state = SessionState.SIGNING_IN
            session = await self._claim(trimmed, password)
        finally:
            if self._state is SessionState.SIGNING_IN:
                self._state = SessionState.SIGNED_OUT

        self._adopt(session)
        logger.info("Signed in account %s", session.account_id)
        if self.audit_service is not None:
            await asyncio.to_thread(
                self.audit_service.record_event, session.account_id, "login"
            )
        return session

    async def restore(self, session: Session) -> bool:
        """Resume a session from a previous run if it still holds the lock."""
        if self.is_signed_in or self._state is SessionState.SIGNING_IN:
            return False
        try:
            lock = await asyncio.to_thread(
                self.lock_repository.get_lock, session.account_id
            )
        except Exception:
            logger.warning("Could not verify restored session", exc_info=True)
            lock = None
        if lock is None or lock.session_token != session.session_token:
            await self._remote_sign_out()
            return False
        self._adopt(session)
        return True

    async def sign_out(self, clear_draft: bool = True) -> None:
        """Voluntary logout."""
        await self._end_session(LogoutReason.VOLUNTARY, clear_draft=clear_draft)

    def record_activity(self) -> None:
        """Stamp a user interaction (pointer, key, touch or scroll)."""
        if self.is_signed_in:
            self._last_activity = self.clock()

    def idle_seconds(self) -> float:
        if not self.is_signed_in:
            return 0.0
        return self.clock() - self._last_activity

    async def check_idle(self) -> bool:
        """Sign out once past the idle threshold; return True if still signed in."""
        if not self.is_signed_in:
            return False
        if self.idle_seconds() >= self.idle_timeout_seconds:
            logger.info("Idle timeout reached for %s", self.username)
            await self._end_session(LogoutReason.IDLE, clear_draft=False)
            return False
        return True

    async def resume(self) -> bool:
        """Handle the client regaining focus after timers may have been paused."""
        still_signed_in = await self.check_idle()
        if still_signed_in:
            self.record_activity()
        return still_signed_in

    async def check_lock(self) -> bool:
        """Run one supersession check; return True if still signed in."""
        session = self._session
        if not self.is_signed_in or session is None:
            return False
        try:
            lock = await asyncio.to_thread(
                self.lock_repository.get_lock, session.account_id
            )
        except Exception:
            logger.debug("Lock poll failed, retrying next tick", exc_info=True)
            return True
        if self._session is not session:
            return False
        if lock is not None and lock.session_token == session.session_token:
            self._reasserted = False
            return True

        within_grace = self.clock() - self._signed_in_at < self.grace_seconds
        if within_grace and not self._reasserted:
            self._reasserted = True
            logger.info(
                "Lock mismatch within grace window for %s, re-asserting token",
                session.account_id,
            )
            try:
                await asyncio.to_thread(
                    self.lock_repository.upsert_lock,
                    session.account_id,
                    session.session_token,
                )
            except Exception:
                logger.debug("Lock re-assertion failed", exc_info=True)
            return True

        logger.info("Session for %s superseded by a newer sign-in", session.account_id)
        await self._end_session(LogoutReason.SUPERSEDED, clear_draft=True)
        return False

    async def run_lock_polling(self) -> None:
        """Poll the lock row on a fixed interval until the session ends."""
        session = self._session
        while session is not None and self._session is session:
            await asyncio.sleep(self.poll_interval_seconds)
            if self._session is not session:
                return
            await self.check_lock()

    async def run_idle_watch(self) -> None:
        """Re-check the idle threshold periodically until the session ends.

        Each wait is capped at the time left before the threshold, so the
        logout lands on time instead of at the next periodic check.
        """
        session = self._session
        while session is not None and self._session is session:
            remaining = self.idle_timeout_seconds - self.idle_seconds()
            delay = min(self.idle_check_interval_seconds, remaining)
            await asyncio.sleep(max(0.0, delay))
            if self._session is not session:
                return
            await self.check_idle()

    async def stop(self) -> None:
        """Cancel background monitoring without signing out."""
        tasks = self._drain_tasks()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _claim(self, username: str, password: str) -> Session:
        email = _to_email(username, self.email_domain)
        identity = await asyncio.to_thread(self.auth_gateway.sign_in, email, password)
        token = self.token_factory()
        try:
            await asyncio.to_thread(
                self.lock_repository.upsert_lock, identity.account_id, token
            )
            lock = await asyncio.to_thread(
                self.lock_repository.get_lock, identity.account_id
            )
        except Exception:
            logger.warning("Could not write login lock", exc_info=True)
            lock = None
        if lock is None or lock.session_token != token:
            await self._remote_sign_out()
            raise AuthError(AuthErrorReason.LOCK_NOT_CONFIRMED)
        local_name = identity.email.split("@", 1)[0] if identity.email else username
        return Session(
            account_id=identity.account_id,
            session_token=token,
            created_at=self.wall_clock(),
            username=local_name,
            is_admin=local_name.lower() in self.admin_usernames,
        )

    def _adopt(self, session: Session) -> None:
        now = self.clock()
        self._session = session
        self._state = SessionState.SIGNED_IN
        self._signed_in_at = now
        self._last_activity = now
        self._reasserted = False
        self._logout_reason = None
        if self.background_monitoring:
            self._tasks = [
                asyncio.create_task(self.run_lock_polling()),
                asyncio.create_task(self.run_idle_watch()),
            ]

    async def _end_session(
        self,
        reason: LogoutReason,
        clear_draft: bool,
        next_state: SessionState = SessionState.SIGNED_OUT,
    ) -> None:
        session = self._session
        if session is None or self._state is not SessionState.SIGNED_IN:
            return
        self._session = None
        self._state = next_state
        self._logout_reason = reason
        current = asyncio.current_task()
        for task in self._drain_tasks():
            if task is not current:
                task.cancel()
        await self._remote_sign_out()
        event = LogoutEvent(
            account_id=session.account_id, reason=reason, clear_draft=clear_draft
        )
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:
                logger.exception("Logout listener failed for %s", reason)

    async def _remote_sign_out(self) -> None:
        try:
            await asyncio.to_thread(self.auth_gateway.sign_out)
        except Exception:
            logger.warning("Remote sign-out failed", exc_info=True)

    def _drain_tasks(self) -> list[asyncio.Task[None]]:
        tasks, self._tasks = self._tasks, []
        return [task for task in tasks if not task.done()]


def _to_email(username: str, domain: str) -> str:
    if "@" in username:
        return username.lower()
    return f"{username.lower()}@{domain}"
