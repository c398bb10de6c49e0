"""Duplicate-safe batch commits for new and edited reports.

A commit uploads every photo first and writes the report row only after the
whole batch succeeded, so a failed batch never leaves partial paths in the
record and the local draft stays available for a retry.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Protocol

from inspection_capture.domain.errors import (
    CommitValidationError,
    CommitWriteError,
    SubmissionInProgressError,
    UploadTaskError,
)
from inspection_capture.domain.reports import (
    NA_SENTINEL,
    ChecklistEdits,
    ImageValue,
    Process,
    Report,
    is_na_value,
    normalize_image_value,
    normalize_images_map,
)
from inspection_capture.domain.sessions import Session
from inspection_capture.domain.uploads import BatchCommit, UploadTask
from inspection_capture.services.audit import AuditService
from inspection_capture.services.drafts import DraftStore
from inspection_capture.services.session_guard import SessionGuard
from inspection_capture.services.uploads import UploadPipeline, progress_percent

logger = logging.getLogger(__name__)


class ReportRepository(Protocol):
    """Persistence interface for inspection reports."""

    def list_report_ids(self, prefix: str) -> list[str]:
        """Return ids of reports whose id starts with prefix."""

    def get_report(self, report_id: str) -> Report | None:
        """Return a report by id, if present."""

    def insert_report(self, report: Report) -> None:
        """Insert a new report row."""

    def update_report(self, report: Report) -> None:
        """Replace the images, checklist and editor of an existing report."""


class ProcessRepository(Protocol):
    """Read access to process checklists."""

    def find_process(self, name: str, model: str) -> Process | None:
        """Return the process with this name for a product model."""

    def find_by_name(self, name: str) -> Process | None:
        """Return any process with this name."""


@dataclass
class SubmissionGuard:
    """Admits at most one commit at a time and tracks its progress."""

    _in_flight: bool = field(default=False, init=False)
    _generation: int = field(default=0, init=False)
    completed: int = field(default=0, init=False)
    total: int = field(default=0, init=False)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def generation(self) -> int:
        """Counter identifying the current holder."""
        return self._generation

    def try_acquire(self) -> bool:
        """Set the flag if free; check and set happen without yielding."""
        if self._in_flight:
            return False
        self._in_flight = True
        self._generation += 1
        self.completed = 0
        self.total = 0
        return True

    def release(self, generation: int | None = None) -> None:
        """Clear the flag, or only if it is still held by `generation`."""
        if generation is None or generation == self._generation:
            self._in_flight = False

    def update_progress(self, completed: int, total: int) -> None:
        self.completed = completed
        self.total = total

    @property
    def progress_percent(self) -> int:
        return progress_percent(self.completed, self.total)

    @property
    def progress_text(self) -> str:
        if not self._in_flight:
            return ""
        return f"Saving {self.completed}/{self.total}"


@dataclass(frozen=True)
class NewReportCommand:
    """Operator input for a new inspection report."""

    serial: str
    model: str
    process: str
    checklist: ChecklistEdits


@dataclass(frozen=True)
class EditReportCommand:
    """Operator changes to an existing report.

    `checklist.not_applicable` is the full set of items that should be
    marked after the edit, including ones that were already marked.
    """

    report_id: str
    checklist: ChecklistEdits


@dataclass(frozen=True)
class CommitResult:
    """Outcome of a successful commit."""

    report: Report
    added_count: int


@dataclass(frozen=True)
class CommitStatus:
    """Snapshot of the current or most recent commit for the UI."""

    in_flight: bool
    completed: int
    total: int
    percent: int
    text: str
    report_id: str | None = None
    error: str | None = None


def next_report_id(process_code: str, existing_ids: list[str], now: datetime) -> str:
    """Return `<code>-<YYYYMMDD><NNN>` numbered after today's reports."""
    prefix = f"{process_code}-{now:%Y%m%d}"
    count = sum(1 for report_id in existing_ids if report_id.startswith(prefix))
    return f"{prefix}{count + 1:03d}"


def build_new_batch(
    report_id: str, process: Process, command: NewReportCommand
) -> BatchCommit:
    """Task every not-applicable item and every photo, in checklist order."""
    batch = BatchCommit(
        report_id=report_id,
        process_code=process.code,
        model=command.model,
        serial=command.serial.strip(),
        expected_items=list(process.items),
    )
    for item in process.items:
        if item in command.checklist.not_applicable:
            batch.tasks.append(UploadTask(item=item, file_index=0))
            continue
        for file_index, photo in enumerate(command.checklist.attachments.get(item, [])):
            batch.tasks.append(
                UploadTask(
                    item=item,
                    file_index=file_index,
                    attachment=photo,
                    photo_index=file_index + 1,
                )
            )
    return batch


def build_edit_batch(
    report: Report, process_code: str, command: EditReportCommand
) -> BatchCommit:
    """Task only changed items: new photos, or items newly marked not applicable.

    New photos are numbered after the photos the item already has.
    """
    images = normalize_images_map(report.images)
    batch = BatchCommit(
        report_id=report.id,
        process_code=process_code,
        model=report.model,
        serial=report.serial,
        expected_items=list(report.expected_items),
    )
    for item in report.expected_items:
        was_na = is_na_value(images.get(item))
        is_na = item in command.checklist.not_applicable
        if is_na:
            if not was_na:
                batch.tasks.append(UploadTask(item=item, file_index=0))
            continue
        existing = len(normalize_image_value(images.get(item)))
        for file_index, photo in enumerate(command.checklist.attachments.get(item, [])):
            batch.tasks.append(
                UploadTask(
                    item=item,
                    file_index=file_index,
                    attachment=photo,
                    photo_index=existing + file_index + 1,
                )
            )
    return batch


def merge_edit_images(
    report: Report, command: EditReportCommand, batch: BatchCommit
) -> dict[str, ImageValue]:
    """Combine kept paths, new uploads and marks into the edited image map.

    An item un-marked without new photos goes back to untouched.
    """
    existing = normalize_images_map(report.images)
    uploaded = batch.uploaded_paths()
    images: dict[str, ImageValue] = {}
    for item in report.expected_items:
        if item in command.checklist.not_applicable:
            images[item] = NA_SENTINEL
            continue
        paths = [*normalize_image_value(existing.get(item)), *uploaded.get(item, [])]
        if paths:
            images[item] = paths
    return normalize_images_map(images)


def merge_new_images(batch: BatchCommit) -> dict[str, ImageValue]:
    """Build the image map of a new report from a settled batch."""
    images: dict[str, ImageValue] = {}
    uploaded = batch.uploaded_paths()
    for task in batch.tasks:
        if task.not_applicable:
            images[task.item] = NA_SENTINEL
        elif task.item in uploaded:
            images[task.item] = uploaded[task.item]
    return normalize_images_map(images)


@dataclass
class ReportCommitService:
    """Drives one guarded batch commit from confirmation to report write."""

    session_guard: SessionGuard
    report_repository: ReportRepository
    process_repository: ProcessRepository
    pipeline: UploadPipeline
    draft_store: DraftStore
    audit_service: AuditService
    guard: SubmissionGuard = field(default_factory=SubmissionGuard)
    clock: Callable[[], datetime] = datetime.now

    _last_report_id: str | None = field(default=None, init=False)
    _last_error: str | None = field(default=None, init=False)
    _background: set[asyncio.Task[CommitResult]] = field(
        default_factory=set, init=False
    )

    def status(self) -> CommitStatus:
        return CommitStatus(
            in_flight=self.guard.in_flight,
            completed=self.guard.completed,
            total=self.guard.total,
            percent=self.guard.progress_percent,
            text=self.guard.progress_text,
            report_id=self._last_report_id,
            error=self._last_error,
        )

    async def commit_new(self, command: NewReportCommand) -> CommitResult:
        """Upload a new report's photos and insert the report."""
        self._admit()
        return await self._commit_new(command)

    async def commit_edit(self, command: EditReportCommand) -> CommitResult:
        """Upload an edit's new photos and update the report."""
        self._admit()
        return await self._commit_edit(command)

    def submit_new(self, command: NewReportCommand) -> asyncio.Task[CommitResult]:
        """Admit a new-report commit and let it settle in the background."""
        self._admit()
        return self._track(asyncio.create_task(self._commit_new(command)))

    def submit_edit(self, command: EditReportCommand) -> asyncio.Task[CommitResult]:
        """Admit an edit commit and let it settle in the background."""
        self._admit()
        return self._track(asyncio.create_task(self._commit_edit(command)))

    async def wait_idle(self) -> None:
        """Wait for background commits to settle."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _admit(self) -> None:
        if not self.guard.try_acquire():
            raise SubmissionInProgressError()
        self._last_report_id = None
        self._last_error = None

    def _track(self, task: asyncio.Task[CommitResult]) -> asyncio.Task[CommitResult]:
        self._background.add(task)
        task.add_done_callback(partial(self._settled, self.guard.generation))
        return task

    def _settled(self, generation: int, task: asyncio.Task[CommitResult]) -> None:
        self._background.discard(task)
        if task.cancelled():
            # a task cancelled before its first step never reaches its finally
            self.guard.release(generation)
            return
        error = task.exception()
        if error is not None:
            logger.warning("Background commit failed: %s", error)

    async def _commit_new(self, command: NewReportCommand) -> CommitResult:
        try:
            session = self._require_session()
            process = await self._validate_new(command)
            existing_ids = await asyncio.to_thread(
                self.report_repository.list_report_ids, process.code
            )
            report_id = next_report_id(process.code, existing_ids, self.clock())
            batch = build_new_batch(report_id, process, command)
            await self._upload(batch)

            report = Report(
                id=report_id,
                serial=batch.serial,
                model=command.model,
                process=command.process,
                images=merge_new_images(batch),
                expected_items=list(process.items),
                edited_by=session.username,
            )
            await self._write(self.report_repository.insert_report, report)
            added = batch.added_count()
            await self._audit(session, "report_create", report.id)
            await self._audit(
                session, "upload_photo_batch", report.id, {"added_count": added}
            )
            await self.draft_store.clear(session.account_id)
            return self._succeeded(report, added)
        except Exception as exc:
            self._last_error = str(exc)
            raise
        finally:
            self.guard.release()

    async def _commit_edit(self, command: EditReportCommand) -> CommitResult:
        try:
            session = self._require_session()
            report = await asyncio.to_thread(
                self.report_repository.get_report, command.report_id
            )
            if report is None:
                raise CommitValidationError(
                    f"Report {command.report_id} was not found."
                )
            process = await asyncio.to_thread(
                self.process_repository.find_by_name, report.process
            )
            process_code = process.code if process else report.process
            batch = build_edit_batch(report, process_code, command)
            await self._upload(batch)

            updated = Report(
                id=report.id,
                serial=report.serial,
                model=report.model,
                process=report.process,
                images=merge_edit_images(report, command, batch),
                expected_items=list(report.expected_items),
                edited_by=session.username,
            )
            await self._write(self.report_repository.update_report, updated)
            added = batch.added_count()
            await self._audit(session, "report_update", updated.id)
            if added > 0:
                await self._audit(
                    session, "upload_photo_batch", updated.id, {"added_count": added}
                )
            await self.draft_store.clear(session.account_id)
            return self._succeeded(updated, added)
        except Exception as exc:
            self._last_error = str(exc)
            raise
        finally:
            self.guard.release()

    def _require_session(self) -> Session:
        session = self.session_guard.session
        if session is None or not self.session_guard.is_signed_in:
            raise CommitValidationError("Sign in before saving.")
        return session

    async def _validate_new(self, command: NewReportCommand) -> Process:
        if not command.serial.strip():
            raise CommitValidationError("Enter a serial number first.")
        if not command.model or not command.process:
            raise CommitValidationError("Select a model and a process first.")
        process = await asyncio.to_thread(
            self.process_repository.find_process, command.process, command.model
        )
        if process is None:
            raise CommitValidationError(
                f"Process {command.process} is not defined for model {command.model}."
            )
        if not process.items:
            raise CommitValidationError(
                "This process has no checklist items, so no report can be created."
            )
        return process

    async def _upload(self, batch: BatchCommit) -> None:
        self.guard.update_progress(0, batch.total_count)
        await self.pipeline.run(batch, on_progress=self.guard.update_progress)
        if batch.failures:
            raise UploadTaskError(batch.failures)

    async def _write(self, write: Callable[[Report], None], report: Report) -> None:
        try:
            await asyncio.to_thread(write, report)
        except Exception as exc:
            logger.error("Report write for %s rejected: %s", report.id, exc)
            raise CommitWriteError(str(exc)) from exc

    async def _audit(
        self,
        session: Session,
        action: str,
        report_id: str,
        meta: dict[str, object] | None = None,
    ) -> None:
        await asyncio.to_thread(
            self.audit_service.record_event, session.account_id, action, report_id, meta
        )

    def _succeeded(self, report: Report, added: int) -> CommitResult:
        self._last_report_id = report.id
        logger.info("Saved report %s with %d new photos", report.id, added)
        return CommitResult(report=report, added_count=added)

