"""Bounded-concurrency photo upload pipeline."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Protocol, TypeVar

from inspection_capture.domain.uploads import (
    BatchCommit,
    UploadFailure,
    UploadTask,
    UploadTaskState,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[int, int], None]

UPLOAD_CONTENT_TYPE = "image/jpeg"


class PhotoStorage(Protocol):
    """Object storage for report photos."""

    def put(self, path: str, content: bytes, content_type: str) -> str:
        """Store bytes at path, replacing any object left there, and return it."""

    def create_signed_url(self, bucket: str | None, path: str, ttl_seconds: int) -> str:
        """Return a time-limited URL for a stored object."""


class ImageCompressor(Protocol):
    """Shrinks a picked photo before it is uploaded."""

    def compress(self, content: bytes) -> bytes:
        """Return the re-encoded image bytes."""


async def run_in_windows(
    operations: Sequence[Callable[[], Awaitable[T]]], concurrency: int
) -> list[T | BaseException]:
    """Run operations in sequential windows of at most `concurrency`.

    A window starts only after every operation in the previous one has
    settled. Exceptions are returned in place of results.
    """
    size = max(1, concurrency)
    results: list[T | BaseException] = []
    for start in range(0, len(operations), size):
        window = [operation() for operation in operations[start : start + size]]
        results.extend(await asyncio.gather(*window, return_exceptions=True))
    return results


def item_index(items: Sequence[str], item: str) -> int:
    """Return the 1-based position of an item; unknown items sort last."""
    try:
        return items.index(item) + 1
    except ValueError:
        return len(items) + 1


def build_photo_path(  # noqa: PLR0913
    process_code: str,
    model: str,
    serial: str,
    report_id: str,
    items: Sequence[str],
    item: str,
    photo_index: int,
) -> str:
    """Return the deterministic storage path for one photo of a report."""
    sequence = max(1, photo_index)
    filename = f"item{item_index(items, item)}-{sequence}.jpg"
    return f"{process_code}/{model}/{serial}/{report_id}/{filename}"


def progress_percent(completed: int, total: int) -> int:
    return round(completed / max(total, 1) * 100)


@dataclass
class UploadPipeline:
    """Compresses and uploads the photos of one batch, then judges it."""

    storage: PhotoStorage
    compressor: ImageCompressor
    concurrency: int = 6

    async def run(
        self, batch: BatchCommit, on_progress: ProgressCallback | None = None
    ) -> BatchCommit:
        """Settle every task in the batch and record failures.

        Failures never short-circuit the batch; callers inspect
        `batch.failures` once this returns.
        """
        batch.completed_count = 0
        batch.failures.clear()
        if on_progress is not None:
            on_progress(0, batch.total_count)
        operations = [
            _bind(self._execute, batch, task, on_progress) for task in batch.tasks
        ]
        await run_in_windows(operations, self.concurrency)
        if batch.failures:
            logger.warning(
                "Batch %s finished with %d failed uploads",
                batch.report_id,
                len(batch.failures),
            )
        return batch

    async def _execute(
        self,
        batch: BatchCommit,
        task: UploadTask,
        on_progress: ProgressCallback | None,
    ) -> None:
        try:
            if task.attachment is None:
                task.state = UploadTaskState.DONE
                return
            task.state = UploadTaskState.RUNNING
            path = build_photo_path(
                batch.process_code,
                batch.model,
                batch.serial,
                batch.report_id,
                batch.expected_items,
                task.item,
                task.photo_index,
            )
            try:
                compressed = await asyncio.to_thread(
                    self.compressor.compress, task.attachment.content
                )
                task.path = await asyncio.to_thread(
                    self.storage.put, path, compressed, UPLOAD_CONTENT_TYPE
                )
            except Exception:
                logger.exception("Upload failed for %s (%s)", task.item, path)
                task.state = UploadTaskState.FAILED
                batch.failures.append(
                    UploadFailure(item=task.item, filename=task.attachment.filename)
                )
                return
            task.state = UploadTaskState.DONE
        finally:
            batch.completed_count += 1
            if on_progress is not None:
                on_progress(batch.completed_count, batch.total_count)


_Execute = Callable[[BatchCommit, UploadTask, ProgressCallback | None], Awaitable[None]]


def _bind(
    execute: _Execute,
    batch: BatchCommit,
    task: UploadTask,
    on_progress: ProgressCallback | None,
) -> Callable[[], Awaitable[None]]:
    def operation() -> Awaitable[None]:
        return execute(batch, task, on_progress)

    return operation
