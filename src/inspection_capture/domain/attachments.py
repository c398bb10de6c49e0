"""Binary photo attachments picked by the operator."""

from dataclasses import dataclass, field
from datetime import UTC, datetime

DEFAULT_FILENAME = "image.jpg"
DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class Attachment:
    """A picked or restored photo file.

    Restored attachments are built from the same four fields as freshly
    picked ones, so downstream preview and upload code cannot tell them apart.
    """

    content: bytes
    filename: str = DEFAULT_FILENAME
    mime_type: str = DEFAULT_MIME_TYPE
    captured_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @classmethod
    def restore(
        cls,
        content: bytes,
        filename: str | None,
        mime_type: str | None,
        captured_at: datetime | None,
    ) -> "Attachment":
        """Rebuild an attachment from persisted fields, filling gaps with defaults."""
        return cls(
            content=bytes(content),
            filename=filename or DEFAULT_FILENAME,
            mime_type=mime_type or DEFAULT_MIME_TYPE,
            captured_at=captured_at or datetime.now(tz=UTC),
        )

    @property
    def size(self) -> int:
        return len(self.content)
