"""Domain models for one batch commit and its upload tasks."""

from dataclasses import dataclass, field
from enum import StrEnum

from inspection_capture.domain.attachments import Attachment


class UploadTaskState(StrEnum):
    """Lifecycle of a single upload task."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass
class UploadTask:
    """One photo to upload, or a not-applicable item when attachment is None."""

    item: str
    file_index: int
    attachment: Attachment | None = None
    photo_index: int = 1
    state: UploadTaskState = UploadTaskState.PENDING
    path: str | None = None

    @property
    def not_applicable(self) -> bool:
        return self.attachment is None


@dataclass(frozen=True)
class UploadFailure:
    """A photo that did not upload."""

    item: str
    filename: str


@dataclass
class BatchCommit:
    """Upload tasks plus progress for one save confirmation."""

    report_id: str
    process_code: str
    model: str
    serial: str
    expected_items: list[str]
    tasks: list[UploadTask] = field(default_factory=list)
    completed_count: int = 0
    failures: list[UploadFailure] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        return len(self.tasks)

    @property
    def settled(self) -> bool:
        return self.completed_count >= self.total_count

    @property
    def succeeded(self) -> bool:
        return self.settled and not self.failures

    def uploaded_paths(self) -> dict[str, list[str]]:
        """Return uploaded paths per item in task order."""
        paths: dict[str, list[str]] = {}
        for task in self.tasks:
            if task.state is UploadTaskState.DONE and task.path:
                paths.setdefault(task.item, []).append(task.path)
        return paths

    def added_count(self) -> int:
        return sum(
            1
            for task in self.tasks
            if not task.not_applicable and task.state is UploadTaskState.DONE
        )
