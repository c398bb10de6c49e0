"""Durable recovery of unsubmitted work across restarts.

One draft is kept per account. Saves are debounced on the trailing edge,
so the stored draft is always the last state handed in before the timer
fired. Storage failures are logged and otherwise ignored: recovery is a
convenience and must never block the form it mirrors.
"""

import asyncio
import base64
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from inspection_capture.domain.attachments import Attachment
from inspection_capture.domain.drafts import (
    AdministrationDraftData,
    CreationDraftData,
    Draft,
    DraftPayload,
    RestoredDraft,
    ReviewDraftData,
    page_for,
)
from inspection_capture.domain.sessions import LogoutEvent

logger = logging.getLogger(__name__)


class DraftStorage(Protocol):
    """Local key-value store able to hold binary attachments."""

    def get(self, key: str) -> Draft | None:
        """Return the draft stored under key, if any."""

    def set(self, key: str, draft: Draft) -> None:
        """Replace the draft stored under key."""

    def delete(self, key: str) -> None:
        """Remove the draft stored under key."""


def draft_key(account_id: str) -> str:
    """Return the storage key for an account's draft."""
    return f"draft_v1:{account_id.lower()}"


def has_meaningful_changes(payload: DraftPayload) -> bool:
    """Return True when a page holds work worth offering to resume.

    Browsing the review page (filters, queries, expanded rows) never counts;
    only an open edit or photo/not-applicable changes do.
    """
    if isinstance(payload, CreationDraftData):
        return bool(
            payload.serial.strip()
            or payload.selected_model
            or payload.selected_process
            or not payload.checklist.is_empty()
        )
    if isinstance(payload, ReviewDraftData):
        return bool(payload.editing_report_id or not payload.checklist.is_empty())
    if isinstance(payload, AdministrationDraftData):
        return bool(
            payload.process_name.strip()
            or payload.process_code.strip()
            or payload.process_model
            or payload.new_item.strip()
            or payload.editing_index is not None
            or payload.items
        )
    raise TypeError(f"Unsupported draft payload: {type(payload).__name__}")


def preview_handle(attachment: Attachment) -> str:
    """Return a data URL a client can render directly as a thumbnail."""
    encoded = base64.b64encode(attachment.content).decode("ascii")
    return f"data:{attachment.mime_type};base64,{encoded}"


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class DraftStore:
    """Mirrors in-progress form state to local storage and offers recovery."""

    storage: DraftStorage
    debounce_seconds: float = 0.7
    clock: Callable[[], datetime] = _utcnow

    _loaded_for: str | None = field(default=None, init=False)
    _pending: tuple[str, Draft] | None = field(default=None, init=False)
    _applied: Draft | None = field(default=None, init=False)
    _save_task: asyncio.Task[None] | None = field(default=None, init=False)

    @property
    def pending_draft(self) -> Draft | None:
        return self._pending[1] if self._pending else None

    @property
    def has_pending_prompt(self) -> bool:
        return self._pending is not None

    @property
    def applied_draft(self) -> Draft | None:
        return self._applied

    def build(self, payload: DraftPayload) -> Draft | None:
        """Wrap a page payload as a draft, or None when nothing is dirty."""
        if not has_meaningful_changes(payload):
            return None
        return Draft(page=page_for(payload), updated_at=self.clock(), payload=payload)

    def save(self, account_id: str, payload: DraftPayload) -> None:
        """Schedule a debounced write of the page state.

        Each call replaces any write still waiting on the timer. A payload
        with no meaningful changes deletes the stored draft instead.
        """
        self._cancel_pending_save()
        self._save_task = asyncio.create_task(
            self._save_after_delay(account_id, payload)
        )

    async def save_now(self, account_id: str, payload: DraftPayload) -> None:
        """Write the page state immediately, skipping the debounce."""
        self._cancel_pending_save()
        await self._write(account_id, payload)

    async def flush(self) -> None:
        """Wait for a scheduled write to land."""
        task = self._save_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    async def load(self, account_id: str) -> Draft | None:
        """Read the stored draft once per account per application run.

        A found draft is held as the pending prompt rather than applied.
        """
        if self._loaded_for == account_id:
            return None
        self._loaded_for = account_id
        try:
            draft = await asyncio.to_thread(self.storage.get, draft_key(account_id))
        except Exception:
            logger.warning("Could not read draft for %s", account_id, exc_info=True)
            return None
        if draft is not None:
            self._pending = (account_id, draft)
        return draft

    async def resolve(self, accept: bool) -> RestoredDraft | None:
        """Apply or discard the pending draft and dismiss the prompt."""
        pending, self._pending = self._pending, None
        if pending is None:
            return None
        account_id, draft = pending
        if not accept:
            await self._delete(account_id)
            return None
        self._applied = draft
        previews = {
            item: [preview_handle(photo) for photo in photos]
            for item, photos in _attachments_of(draft.payload).items()
            if photos
        }
        return RestoredDraft(draft=draft, previews=previews)

    async def clear(self, account_id: str) -> None:
        """Delete the stored draft, dropping any write still on the timer."""
        self._cancel_pending_save()
        self._applied = None
        await self._delete(account_id)

    def clear_prompt(self) -> None:
        self._pending = None

    def reset_tracking(self) -> None:
        """Allow the next sign-in to load and prompt again."""
        self._loaded_for = None

    async def handle_logout(self, event: LogoutEvent) -> None:
        """Logout listener: dismiss the prompt and clear the draft when asked."""
        self.clear_prompt()
        if event.clear_draft:
            await self.clear(event.account_id)
        self.reset_tracking()

    async def _save_after_delay(self, account_id: str, payload: DraftPayload) -> None:
        await asyncio.sleep(self.debounce_seconds)
        await self._write(account_id, payload)

    async def _write(self, account_id: str, payload: DraftPayload) -> None:
        if self._pending is not None and self._pending[0] == account_id:
            logger.debug("Draft prompt unresolved for %s, skipping save", account_id)
            return
        draft = self.build(payload)
        key = draft_key(account_id)
        try:
            if draft is None:
                await asyncio.to_thread(self.storage.delete, key)
            else:
                await asyncio.to_thread(self.storage.set, key, draft)
        except Exception:
            logger.warning("Could not save draft for %s", account_id, exc_info=True)

    async def _delete(self, account_id: str) -> None:
        try:
            await asyncio.to_thread(self.storage.delete, draft_key(account_id))
        except Exception:
            logger.warning("Could not delete draft for %s", account_id, exc_info=True)

    def _cancel_pending_save(self) -> None:
        task, self._save_task = self._save_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()


def _attachments_of(payload: DraftPayload) -> dict[str, list[Attachment]]:
    if isinstance(payload, CreationDraftData | ReviewDraftData):
        return payload.checklist.attachments
    return {}
